"""
Unit tests for mail item grouping.
"""

import random
from datetime import datetime, timezone

import pytest

from app.errors import MalformedInstantError, ValidationError
from app.models.mail_item import MailItem
from app.services.mail_grouping import (
    count_by_type,
    display_status,
    group_mail_items,
    group_mail_items_simple,
    item_quantity,
    status_sort_key,
)


def _item(mail_item_id, received_date, contact_id="contact-1", item_type="Letter",
          status="Received", quantity=1, description=None, contacts=None):
    row = {
        "mail_item_id": mail_item_id,
        "contact_id": contact_id,
        "item_type": item_type,
        "status": status,
        "received_date": received_date,
        "quantity": quantity,
        "description": description,
    }
    if contacts is not None:
        row["contacts"] = contacts
    return row


class TestStatusOrdering:
    def test_known_statuses_follow_priority(self):
        assert status_sort_key("Picked Up") < status_sort_key("Notified")
        assert status_sort_key("Notified") < status_sort_key("Received")
        assert status_sort_key("Scanned & Sent") < status_sort_key("Abandoned")

    def test_unknown_statuses_sort_last_alphabetically(self):
        assert status_sort_key("Abandoned") < status_sort_key("Held")
        assert status_sort_key("Held") < status_sort_key("Returned")

    def test_single_status(self):
        assert display_status(["Received", "Received"]) == "Received"

    def test_mixed_status_ordered_by_priority(self):
        assert display_status(["Received", "Picked Up", "Notified"]) == \
            "Mixed (Picked Up, Notified, Received)"

    def test_mixed_status_independent_of_input_order(self):
        assert display_status(["Abandoned", "Held", "Notified"]) == \
            display_status(["Held", "Notified", "Abandoned"]) == \
            "Mixed (Notified, Abandoned, Held)"


class TestItemQuantity:
    @pytest.mark.parametrize("quantity", [None, 0])
    def test_missing_quantity_counts_as_one(self, quantity):
        assert item_quantity(quantity) == 1

    def test_positive_quantity_kept(self):
        assert item_quantity(4) == 4

    def test_negative_quantity_rejected(self):
        with pytest.raises(ValidationError):
            item_quantity(-2)


class TestGroupMailItems:
    """Grouping by (contact, calendar day, item type) for the mail log."""

    def test_same_local_day_across_utc_midnight_is_one_group(self):
        """Three letters at 9 AM, 6 PM and 11 PM Eastern on Dec 9 (the last is Dec 10 UTC)."""
        items = [
            _item("m1", "2025-12-09T14:00:00Z"),
            _item("m2", "2025-12-09T23:00:00Z"),
            _item("m3", "2025-12-10T04:00:00Z"),
        ]
        result = group_mail_items(items)

        assert len(result.groups) == 1
        group = result.groups[0]
        assert group.total_quantity == 3
        assert group.calendar_day == "2025-12-09"
        assert group.group_key == "contact-1|2025-12-09|Letter"
        assert [i.mail_item_id for i in group.items] == ["m1", "m2", "m3"]
        # Reported in local time, like every stored timestamp
        assert group.latest_received_date == "2025-12-09T23:00:00.000-05:00"
        assert result.errors == []

    def test_local_midnight_splits_groups(self):
        items = [
            _item("m1", "2025-12-10T04:59:00Z"),  # 11:59 PM Dec 9 Eastern
            _item("m2", "2025-12-10T05:01:00Z"),  # 12:01 AM Dec 10 Eastern
        ]
        result = group_mail_items(items)
        assert [g.calendar_day for g in result.groups] == ["2025-12-10", "2025-12-09"]

    def test_datetime_rows_grouped_like_strings(self):
        """Rows carrying datetime objects instead of strings (as a driver may return)."""
        items = [
            _item("m1", datetime(2025, 12, 9, 14, 0, tzinfo=timezone.utc)),
            _item("m2", "2025-12-09T18:30:00-05:00"),
            _item("m3", datetime(2025, 12, 10, 1, 0, tzinfo=timezone.utc)),  # 8 PM Dec 9 Eastern
        ]
        result = group_mail_items(items)

        assert result.errors == []
        assert len(result.groups) == 1
        group = result.groups[0]
        assert group.calendar_day == "2025-12-09"
        assert group.total_quantity == 3
        assert [i.mail_item_id for i in group.items] == ["m1", "m2", "m3"]
        assert group.latest_received_date == "2025-12-09T20:00:00.000-05:00"

    def test_latest_received_date_normalizes_offsets(self):
        result = group_mail_items([_item("m1", "2025-12-09T20:00:00+00:00")])
        assert result.groups[0].latest_received_date == "2025-12-09T15:00:00.000-05:00"

    def test_splits_by_contact_and_type(self):
        items = [
            _item("m1", "2025-12-09T14:00:00Z", contact_id="contact-1"),
            _item("m2", "2025-12-09T15:00:00Z", contact_id="contact-2"),
            _item("m3", "2025-12-09T16:00:00Z", contact_id="contact-1", item_type="Package"),
        ]
        result = group_mail_items(items)
        assert {g.group_key for g in result.groups} == {
            "contact-1|2025-12-09|Letter",
            "contact-2|2025-12-09|Letter",
            "contact-1|2025-12-09|Package",
        }

    def test_groups_ordered_most_recent_first(self):
        items = [
            _item("m1", "2025-12-08T14:00:00Z", contact_id="contact-1"),
            _item("m2", "2025-12-09T20:00:00Z", contact_id="contact-2"),
            _item("m3", "2025-12-09T15:00:00Z", contact_id="contact-3"),
        ]
        result = group_mail_items(items)
        assert [g.contact_id for g in result.groups] == ["contact-2", "contact-3", "contact-1"]

    def test_ties_broken_by_group_key(self):
        items = [
            _item("m1", "2025-12-09T14:00:00Z", contact_id="contact-b"),
            _item("m2", "2025-12-09T14:00:00Z", contact_id="contact-a"),
        ]
        result = group_mail_items(items)
        assert [g.contact_id for g in result.groups] == ["contact-a", "contact-b"]

    def test_mixed_statuses(self):
        items = [
            _item("m1", "2025-12-09T14:00:00Z", status="Received"),
            _item("m2", "2025-12-09T15:00:00Z", status="Picked Up"),
            _item("m3", "2025-12-09T16:00:00Z", status="Received"),
        ]
        group = group_mail_items(items).groups[0]
        assert group.statuses == ["Picked Up", "Received"]
        assert group.display_status == "Mixed (Picked Up, Received)"

    def test_quantities_summed_with_defaults(self):
        items = [
            _item("m1", "2025-12-09T14:00:00Z", quantity=5),
            _item("m2", "2025-12-09T15:00:00Z", quantity=None),
            _item("m3", "2025-12-09T16:00:00Z", quantity=0),
        ]
        assert group_mail_items(items).groups[0].total_quantity == 7

    def test_has_description_ignores_blank_text(self):
        blank = group_mail_items([
            _item("m1", "2025-12-09T14:00:00Z", description="   "),
        ]).groups[0]
        noted = group_mail_items([
            _item("m1", "2025-12-09T14:00:00Z"),
            _item("m2", "2025-12-09T15:00:00Z", description="Fragile"),
        ]).groups[0]
        assert blank.has_description is False
        assert noted.has_description is True

    def test_contact_summary_taken_from_joined_row(self):
        contact = {"contact_id": "contact-1", "contact_person": "Ana Ruiz", "mailbox_number": "114"}
        items = [
            _item("m1", "2025-12-09T14:00:00Z"),
            _item("m2", "2025-12-09T15:00:00Z", contacts=contact),
        ]
        group = group_mail_items(items).groups[0]
        assert group.contact.contact_person == "Ana Ruiz"
        assert group.contact.mailbox_number == "114"

    def test_accepts_mail_item_models(self):
        items = [MailItem.model_validate(_item("m1", "2025-12-09T14:00:00Z"))]
        assert group_mail_items(items).groups[0].items[0].mail_item_id == "m1"

    def test_input_order_does_not_matter(self):
        items = [
            _item(f"m{i}", f"2025-12-{day:02d}T{hour:02d}:30:00Z",
                  contact_id=f"contact-{i % 3}",
                  item_type=("Letter", "Package")[i % 2],
                  status=("Received", "Notified", "Picked Up")[i % 3])
            for i, (day, hour) in enumerate(
                [(8, 3), (8, 15), (9, 4), (9, 22), (10, 1), (10, 5), (10, 18), (11, 12)]
            )
        ]
        expected = group_mail_items(items).groups
        rng = random.Random(7)
        for _ in range(10):
            shuffled = items[:]
            rng.shuffle(shuffled)
            assert group_mail_items(shuffled).groups == expected

    def test_other_timezone(self):
        # 23:30 UTC is the same day in London but not in Tokyo
        items = [
            _item("m1", "2025-12-09T10:00:00Z"),
            _item("m2", "2025-12-09T23:30:00Z"),
        ]
        assert len(group_mail_items(items, tz="Europe/London").groups) == 1
        assert len(group_mail_items(items, tz="Asia/Tokyo").groups) == 2

    def test_empty_input(self):
        result = group_mail_items([])
        assert result.groups == []
        assert result.errors == []


class TestGroupingErrors:
    def _items(self):
        return [
            _item("m1", "2025-12-09T14:00:00Z"),
            _item("bad-date", "12/09/2025 9am"),
            _item("bad-qty", "2025-12-09T15:00:00Z", quantity=-1),
            {"mail_item_id": "no-status", "contact_id": "contact-1",
             "item_type": "Letter", "received_date": "2025-12-09T16:00:00Z"},
        ]

    def test_bad_rows_reported_and_skipped(self):
        result = group_mail_items(self._items())
        assert len(result.groups) == 1
        assert result.groups[0].total_quantity == 1
        assert [e.mail_item_id for e in result.errors] == ["bad-date", "bad-qty", "no-status"]

    def test_simple_grouping_reports_errors_too(self):
        result = group_mail_items_simple(self._items())
        assert len(result.groups) == 1
        assert len(result.errors) == 3

    def test_strict_raises_malformed_timestamp(self):
        with pytest.raises(MalformedInstantError):
            group_mail_items([_item("bad", "not a date")], strict=True)

    def test_strict_raises_negative_quantity(self):
        with pytest.raises(ValidationError):
            group_mail_items([_item("bad", "2025-12-09T14:00:00Z", quantity=-3)], strict=True)


class TestGroupMailItemsSimple:
    """Grouping by (calendar day, item type) for one customer's profile."""

    def test_groups_by_day_and_type(self):
        items = [
            _item("m1", "2025-12-09T14:00:00Z"),
            _item("m2", "2025-12-10T03:00:00Z"),  # still Dec 9 Eastern
            _item("m3", "2025-12-09T16:00:00Z", item_type="Package"),
        ]
        result = group_mail_items_simple(items)
        assert [g.group_key for g in result.groups] == [
            "2025-12-09_Letter",
            "2025-12-09_Package",
        ]
        assert result.groups[0].total_quantity == 2

    def test_datetime_rows_accepted(self):
        items = [
            _item("m1", datetime(2025, 12, 9, 14, 0, tzinfo=timezone.utc)),
            _item("m2", datetime(2025, 12, 10, 3, 0, tzinfo=timezone.utc)),
        ]
        result = group_mail_items_simple(items)
        assert result.errors == []
        assert [g.group_key for g in result.groups] == ["2025-12-09_Letter"]
        assert result.groups[0].total_quantity == 2

    def test_most_recent_day_first(self):
        items = [
            _item("m1", "2025-12-07T14:00:00Z"),
            _item("m2", "2025-12-09T14:00:00Z"),
            _item("m3", "2025-12-08T14:00:00Z"),
        ]
        result = group_mail_items_simple(items)
        assert [g.calendar_day for g in result.groups] == ["2025-12-09", "2025-12-08", "2025-12-07"]

    def test_latest_status_from_latest_item(self):
        items = [
            _item("m2", "2025-12-09T20:00:00Z", status="Picked Up", description="Signed by Ana"),
            _item("m1", "2025-12-09T14:00:00Z", status="Received", description="Left at desk"),
        ]
        group = group_mail_items_simple(items).groups[0]
        assert group.latest_status == "Picked Up"
        assert group.latest_description == "Signed by Ana"
        assert [i.mail_item_id for i in group.items] == ["m1", "m2"]

    def test_identical_timestamps_use_highest_id(self):
        items = [
            _item("m-b", "2025-12-09T14:00:00Z", status="Notified"),
            _item("m-a", "2025-12-09T14:00:00Z", status="Received"),
        ]
        forward = group_mail_items_simple(items).groups[0]
        backward = group_mail_items_simple(list(reversed(items))).groups[0]
        assert forward.latest_status == backward.latest_status == "Notified"


class TestCountByType:
    def test_counts_total_quantity_per_type(self):
        items = [
            _item("m1", "2025-12-09T14:00:00Z", quantity=2),
            _item("m2", "2025-12-08T14:00:00Z"),
            _item("m3", "2025-12-09T15:00:00Z", item_type="Package"),
            _item("m4", "2025-12-09T15:00:00Z", item_type="Package", contact_id="contact-2"),
        ]
        counts = count_by_type(group_mail_items(items).groups)
        assert counts == {"Letter": 3, "Package": 2}

    def test_empty(self):
        assert count_by_type([]) == {}
