"""
Mail Center Backend API
FastAPI application for the mail log and package storage fees.
"""

import logging
import os
import socket
from typing import List, Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from app.config import get_billing_policy
from app.routers import fees, mail_items
from app.db import supabase_admin

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

logger = logging.getLogger(__name__)

APP_VERSION = "0.1.0"


def _is_usable_lan_ip(ip: str) -> bool:
    """False for loopback and Docker-internal addresses."""
    return not ip.startswith(("127.", "172.", "192.168.65."))


def get_local_ip() -> Optional[str]:
    """
    Best guess at the host's LAN address, for dev CORS origins and the
    startup banner.

    ``HOST_IP`` wins when set (containers can't see the host's address);
    otherwise the outbound interface picked by the OS is used. Returns None
    when nothing usable is found.
    """
    host_ip = os.getenv("HOST_IP", "").strip()
    if host_ip:
        return host_ip

    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
            s.connect(("8.8.8.8", 80))
            ip = s.getsockname()[0]
            if _is_usable_lan_ip(ip):
                return ip
    except OSError:
        pass

    return None


app = FastAPI(
    title="Mail Center API",
    description="Mail intake log, customer mail grouping and package storage fees",
    version=APP_VERSION,
)


def get_cors_origins() -> List[str]:
    """
    Allowed CORS origins.

    Always includes the Vite dev server (http://localhost:5173) and
    http://localhost:3000, plus the same ports on the detected LAN IP.
    Additional origins come from CORS_ORIGINS as a comma-separated list.
    Duplicates are removed while preserving order.
    """
    candidates = ["http://localhost:5173", "http://localhost:3000"]

    local_ip = get_local_ip()
    if local_ip:
        candidates.append(f"http://{local_ip}:5173")
        candidates.append(f"http://{local_ip}:3000")

    cors_env = os.getenv("CORS_ORIGINS", "").strip()
    if cors_env:
        candidates.extend(o.strip() for o in cors_env.split(",") if o.strip())

    return list(dict.fromkeys(candidates))


app.add_middleware(
    CORSMiddleware,
    allow_origins=get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(fees.router, prefix="/api/fees", tags=["fees"])
app.include_router(mail_items.router, prefix="/api/mail-items", tags=["mail-items"])


@app.on_event("startup")
async def log_startup() -> None:
    """Log where the API listens and which fee policy is active."""
    host_port = os.getenv("HOST_PORT", "8000")
    local_ip = get_local_ip()
    network_line = (
        f"  Network: http://{local_ip}:{host_port}"
        if local_ip
        else "  Network: (unavailable)"
    )
    policy = get_billing_policy()
    logger.info(
        "Mail Center API running at:\n"
        "  Local:   http://localhost:%s\n"
        "%s",
        host_port,
        network_line,
    )
    logger.info(
        "Fee policy: %s free day(s), $%s/day, timezone %s",
        policy.grace_period_days,
        policy.daily_rate,
        policy.timezone,
    )


@app.get("/")
async def root():
    return {"message": "Mail Center API", "version": APP_VERSION}


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/health/db")
async def health_db():
    """
    Check that the Supabase admin client can reach the database by reading
    one package_fees row. Returns 503 on failure.
    """
    if supabase_admin is None:
        raise HTTPException(
            status_code=503,
            detail="Database client unavailable: SUPABASE_SERVICE_KEY is not configured",
        )

    try:
        supabase_admin.table("package_fees").select("fee_id").limit(1).execute()
        return {"status": "ok", "database": "reachable"}
    except Exception as exc:
        logger.error(f"Database health check failed: {exc}")
        raise HTTPException(
            status_code=503,
            detail=f"Database connection failed: {str(exc)}",
        )
