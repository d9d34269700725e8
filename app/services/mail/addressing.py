import re
from typing import Any, Iterable, List, Mapping, Optional

from core.config import MailConfig
from models.notifications import EmailAddress

_NAMED_ADDRESS = re.compile(r"^(.*)<(.+)>$")
# split on commas outside double quotes
_ADDRESS_SEPARATOR = re.compile(r',(?=(?:[^"]*"[^"]*")*[^"]*$)')
_TAG = re.compile(r"<[^>]*>")

_ENTITIES = (
    ("&nbsp;", " "),
    ("&lt;", "<"),
    ("&gt;", ">"),
    ("&quot;", '"'),
    # last, so "&amp;lt;" stays "&lt;"
    ("&amp;", "&"),
)


def parse_address_string(value: str) -> List[EmailAddress]:
    """
    Parse `"Jane Doe" <jane@example.com>, ops@example.com` style strings.
    """
    addresses = []
    for part in _ADDRESS_SEPARATOR.split(value or ""):
        part = part.strip()
        if not part:
            continue
        match = _NAMED_ADDRESS.match(part)
        if match:
            name = match.group(1).strip().strip('"').strip() or None
            address = match.group(2).strip()
        else:
            name, address = None, part
        if address:
            addresses.append(EmailAddress(address=address, name=name))
    return addresses


def _normalize_entry(entry: Any) -> List[EmailAddress]:
    if not entry:
        return []
    if isinstance(entry, EmailAddress):
        return [entry] if entry.address else []
    if isinstance(entry, str):
        return parse_address_string(entry)
    if isinstance(entry, Mapping):
        address = (entry.get("address") or "").strip()
        if not address:
            return []
        return [EmailAddress(address=address, name=entry.get("name") or None)]
    return []


def normalize_address_list(value: Any) -> List[EmailAddress]:
    """Normalize a string, mapping, EmailAddress or a list of those."""
    if value is None:
        return []
    entries: Iterable[Any] = value if isinstance(value, (list, tuple)) else [value]
    result = []
    for entry in entries:
        result.extend(_normalize_entry(entry))
    return result


def resolve_from_address(config: MailConfig, from_: Any = None, use_override: bool = True) -> EmailAddress:
    """
    Sender precedence: provider override, then the caller's `from`,
    then the configured default mailbox.
    The override only applies to the HTTP API.
    """
    company_name = config.company.name
    if use_override and config.zepto_from_email:
        return EmailAddress(config.zepto_from_email, config.zepto_from_name or company_name)

    candidates = normalize_address_list(from_)
    if candidates:
        first = candidates[0]
        return EmailAddress(first.address, first.name or company_name)

    return EmailAddress(config.default_sender, company_name)


def html_to_text(html: Optional[str]) -> str:
    text = _TAG.sub("", html or "")
    for entity, char in _ENTITIES:
        text = text.replace(entity, char)
    return text.strip()
