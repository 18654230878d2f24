from __future__ import annotations

import bleach

from ops.exceptions import ValidationError


def clean_text(value, *, field: str = 'text', required: bool = True, max_length: int | None = None) -> str:
    """Strip markup from user-authored text and enforce presence/length."""
    text = bleach.clean(str(value or '').strip(), tags=[], strip=True).strip()
    if required and not text:
        raise ValidationError(f'{field} is required')
    if max_length is not None and len(text) > max_length:
        raise ValidationError(f'{field} must be at most {max_length} characters')
    return text
