"""
Masking helpers for member list views.

Detail views return full records; only list/table responses go through here.
"""

from typing import Any, Dict, Optional


def mask_member_id(member_id: Optional[str]) -> Optional[str]:
    """
    Keep the first and last character, star out the rest.

    >>> mask_member_id('M12345')
    'M****5'
    """
    if not member_id or len(member_id) <= 2:
        return member_id
    return member_id[0] + '*' * (len(member_id) - 2) + member_id[-1]


def mask_phone_number(phone_number: Optional[str]) -> Optional[str]:
    """
    Star out every digit except the last four. Separators are preserved.

    >>> mask_phone_number('+1-555-123-4567')
    '+*-***-***-4567'
    """
    if not phone_number:
        return phone_number

    digits_seen = 0
    total_digits = sum(1 for ch in phone_number if ch.isdigit())
    masked = []
    for ch in phone_number:
        if ch.isdigit():
            digits_seen += 1
            masked.append(ch if digits_seen > total_digits - 4 else '*')
        else:
            masked.append(ch)
    return ''.join(masked)


def mask_email(email: Optional[str]) -> Optional[str]:
    """
    >>> mask_email('juan@example.com')
    'j***@example.com'
    """
    if not email or '@' not in email:
        return email
    local, domain = email.split('@', 1)
    if not local:
        return email
    return f"{local[0]}***@{domain}"


def mask_member_record(record: Dict[str, Any]) -> Dict[str, Any]:
    """Return a copy of a serialized member with identifying fields masked"""
    masked = dict(record)
    if 'member_id' in masked:
        masked['member_id'] = mask_member_id(masked['member_id'])
    if 'phone_number' in masked:
        masked['phone_number'] = mask_phone_number(masked['phone_number'])
    if 'email' in masked:
        masked['email'] = mask_email(masked['email'])
    return masked
