import os
from typing import Any, Callable, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, ValidationError, create_model

from . import log

logger = log.get_logger(__name__)


class EnvVarSpec(BaseModel):
    """Declaration of one environment variable.

    ``type`` is a pydantic field definition, e.g. ``(int, ...)``, used to
    validate the parsed value.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    id: str
    default: Optional[str] = None
    parse: Callable[[str], Any] = lambda x: x
    type: Tuple[Any, Any] = (str, ...)
    is_optional: bool = False
    is_secret: bool = False


def parse(var: EnvVarSpec) -> Any:
    value = os.environ.get(var.id, var.default)
    if value is None or value == "":
        if var.is_optional:
            return None
        raise ValueError(f"Missing required environment variable {var.id}")
    return var.parse(value)


def validate(specs: List[EnvVarSpec]) -> bool:
    """Parse and type-check every spec; log each failure and return False if any failed."""
    ok = True
    for var in specs:
        try:
            value = parse(var)
        except Exception as e:
            logger.error(f"Env var {var.id}: {e}")
            ok = False
            continue

        if value is None and var.is_optional:
            continue

        model = create_model(f"Env_{var.id}", value=var.type)
        try:
            model(value=value)
        except ValidationError as e:
            shown = "***" if var.is_secret else repr(value)
            logger.error(f"Env var {var.id}={shown} is invalid: {e.errors()[0]['msg']}")
            ok = False
    return ok
