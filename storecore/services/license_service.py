"""
Product quota checks.

Both functions run on the caller's ``TenantScope`` so the license read, the
product count and the insert they gate share one transaction.
"""

import logging
from typing import Optional

from sqlalchemy import func, select

from storecore.core.enums import LicenseStatus
from storecore.core.exceptions import NoLicenseError, ProductLimitExceededError
from storecore.core.utils import as_utc, utc_now
from storecore.models.license import License
from storecore.models.product import Product
from storecore.schemas.license import LicenseUsage
from storecore.tenancy import TenantScope

logger = logging.getLogger(__name__)


def is_license_usable(license: License) -> bool:
    try:
        status = LicenseStatus(license.status)
    except ValueError:
        logger.warning("License %s has unknown status %r", license.serial, license.status)
        return False
    if not status.is_usable:
        return False
    expires_at = as_utc(license.expires_at)
    return expires_at is None or expires_at > utc_now()


async def get_license_usage(scope: TenantScope) -> Optional[LicenseUsage]:
    """Quota snapshot for the scope's store, or None when it has no usable license."""
    if not scope.has_tenant:
        return None

    stmt = scope.scoped(select(License), License).order_by(License.created_at.desc())
    licenses = (await scope.session.execute(stmt)).scalars().all()
    license = next((lic for lic in licenses if is_license_usable(lic)), None)
    if license is None:
        return None

    count_stmt = scope.scoped(select(func.count()).select_from(Product), Product)
    product_count = (await scope.session.execute(count_stmt)).scalar_one()

    max_products = license.max_products
    percentage = None
    if max_products:
        percentage = round(product_count / max_products * 100, 1)

    return LicenseUsage(
        serial=license.serial,
        plan=license.plan,
        status=license.status,
        expires_at=as_utc(license.expires_at),
        max_products=max_products,
        product_count=product_count,
        can_create_product=max_products is None or product_count < max_products,
        product_percentage=percentage,
    )


async def ensure_can_create(scope: TenantScope, count: int = 1) -> LicenseUsage:
    """Raise unless the store may create ``count`` more products."""
    usage = await get_license_usage(scope)
    if usage is None:
        raise NoLicenseError(scope.tenant_id)

    if usage.max_products is not None and usage.product_count + count > usage.max_products:
        logger.info(
            "Store %s blocked by product limit: %d + %d > %d",
            scope.tenant_id, usage.product_count, count, usage.max_products,
        )
        raise ProductLimitExceededError(usage.max_products, usage.product_count, count)
    return usage
