"""
Callback payload parsing.

Turns the raw query string or JSON body a provider (or mobile client) sends
back into a typed CallbackPayload variant.
"""
from typing import Any, Mapping, Optional

from pydantic import TypeAdapter, ValidationError

from app.core.exceptions import InvalidCallbackError, OAuthAuthenticationError
from app.integrations.schemas import CallbackPayload

_callback_adapter = TypeAdapter(CallbackPayload)


def _field_name(error: dict) -> str:
    loc = [str(part) for part in error.get("loc", ())]
    # The first element is the discriminator tag
    return loc[-1] if len(loc) > 1 else (loc[0] if loc else "payload")


def parse_callback(provider, raw: Optional[Mapping[str, Any]]):
    """
    Validate a callback for `provider`.

    Raises:
        OAuthAuthenticationError: the provider reported an `error`
            (e.g. the user denied access)
        InvalidCallbackError: a required artifact is missing or malformed
    """
    provider = str(getattr(provider, "value", provider))
    data = dict(raw or {})

    error = data.get("error")
    if error:
        description = data.get("error_description") or error
        raise OAuthAuthenticationError(provider, f"Authorization failed: {description}")

    data["provider"] = provider
    try:
        return _callback_adapter.validate_python(data)
    except ValidationError as e:
        missing = sorted({_field_name(err) for err in e.errors() if err.get("type") == "missing"})
        invalid = sorted({_field_name(err) for err in e.errors() if err.get("type") != "missing"})
        if missing:
            message = f"Missing required callback fields: {', '.join(missing)}"
        else:
            message = f"Invalid callback fields: {', '.join(invalid)}"
        raise InvalidCallbackError(provider, message) from e
