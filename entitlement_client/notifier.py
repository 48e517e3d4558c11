from typing import Optional

from entitlement_client.models import EntitlementRecord

# Usage terms under which a failed check actually stops the product from running
RESTRICTED_USAGE_TERMS = "restricted_usage_by_domain"


def should_warn(record: EntitlementRecord) -> bool:
    """
    Whether the host should show a warning for this record.

    When the last known terms of use do not restrict usage by domain, a
    failed check only affects update delivery, so nothing is shown.
    """
    if record.verified:
        return False
    meta = record.licensed_item_meta
    if meta is not None and meta.get("usageTermsCategory") != RESTRICTED_USAGE_TERMS:
        return False
    return bool(record.error_message)


def render_message(record: EntitlementRecord, display_name: str) -> str:
    return f"{display_name}: {record.error_message}"


def admin_notice(record: EntitlementRecord, display_name: str) -> Optional[str]:
    """The warning text to display, or None when nothing should be shown."""
    if not should_warn(record):
        return None
    return render_message(record, display_name)
