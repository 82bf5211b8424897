"""API dependencies."""

import logging
import secrets
from typing import AsyncGenerator, Optional

from fastapi import Depends, Header, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from flashgate.config import Environment, settings
from flashgate.db.base import get_session_factory
from flashgate.integrations.kube import KubeClient
from flashgate.reconcile.cluster import ClusterReconciler, NodeLister

logger = logging.getLogger("flashgate.api")

_kube_client: Optional[KubeClient] = None


def get_db_session_factory() -> async_sessionmaker[AsyncSession]:
    return get_session_factory()


async def get_db_session(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_db_session_factory),
) -> AsyncGenerator[AsyncSession, None]:
    """Get database session."""
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def get_node_lister() -> NodeLister:
    """Get or create the cluster API client singleton."""
    global _kube_client
    if _kube_client is None:
        _kube_client = KubeClient.from_settings(settings)
    return _kube_client


async def close_kube_client() -> None:
    global _kube_client
    if _kube_client is not None:
        await _kube_client.close()
    _kube_client = None


def get_cluster_reconciler(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_db_session_factory),
    nodes: NodeLister = Depends(get_node_lister),
) -> ClusterReconciler:
    return ClusterReconciler(
        session_factory,
        nodes,
        namespace=settings.namespace,
        cluster_name=settings.cluster_config_name,
        node_selector_label=settings.node_selector_label,
    )


async def verify_api_key(
    authorization: str | None = Header(None),
    x_api_key: str | None = Header(None, alias="X-API-Key"),
) -> None:
    """
    Verify the shared API token.

    Fails closed: unless insecure dev mode is explicitly enabled, requests are
    rejected when no token is configured.
    """
    if settings.allow_insecure_dev and settings.env == Environment.DEVELOPMENT:
        return

    api_key = None
    if authorization and authorization.startswith("Bearer "):
        api_key = authorization[7:]
    elif x_api_key:
        api_key = x_api_key

    if not api_key:
        raise HTTPException(
            status_code=401,
            detail="Missing authorization. Use Authorization: Bearer <key> or X-API-Key header",
        )

    if not settings.api_key:
        logger.error("SECURITY VIOLATION: No API key configured. Set FLASHGATE_API_KEY.")
        raise HTTPException(
            status_code=503,
            detail="Server misconfigured: authentication not properly initialized",
        )

    if not secrets.compare_digest(api_key, settings.api_key):
        raise HTTPException(status_code=401, detail="Invalid API key")


def validate_auth_config() -> None:
    """
    Validate authentication configuration at startup.

    Raises:
        RuntimeError: If configuration is insecure for the current environment
    """
    if settings.allow_insecure_dev and settings.env != Environment.DEVELOPMENT:
        raise RuntimeError(
            f"SECURITY ERROR: allow_insecure_dev=true is only permitted in development. "
            f"Current environment: {settings.env.value}. "
            f"Set FLASHGATE_ALLOW_INSECURE_DEV=false for {settings.env.value}."
        )

    if settings.allow_insecure_dev:
        logger.warning(
            "=" * 80 + "\n"
            "WARNING: Running in INSECURE DEV MODE\n"
            "  - Authentication is DISABLED\n"
            "  - This mode is ONLY for local development\n"
            + "=" * 80
        )
    elif settings.api_key:
        logger.info(f"Authentication enabled: shared API key for {settings.env.value}")
    else:
        raise RuntimeError(
            "SECURITY ERROR: FLASHGATE_API_KEY is not set and insecure dev mode is disabled"
        )
