from decimal import ROUND_HALF_UP, Decimal
from typing import Annotated, Any, Iterable, Mapping

from pydantic import AfterValidator, BaseModel, ConfigDict, PlainSerializer
from pydantic.alias_generators import to_camel

CENTS = Decimal("0.01")

_REQUEST_LOCATIONS = frozenset({"body", "query", "path"})


def quantize_money(value: Decimal) -> Decimal:
    """Round a decimal amount to whole cents."""

    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


def _money_to_wire(value: Decimal) -> int | float:
    if value == value.to_integral_value():
        return int(value)
    return float(value)


Money = Annotated[
    Decimal,
    AfterValidator(quantize_money),
    PlainSerializer(_money_to_wire, return_type=int | float, when_used="json"),
]


class ApiModel(BaseModel):
    """Base model speaking the clinic API's camelCase JSON."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def error_messages(
    errors: Iterable[Mapping[str, Any]], model: type[BaseModel] | None = None
) -> dict[str, str]:
    """Flatten pydantic error entries into ``{field: message}``.

    Request-location prefixes (``body``, ``query``) are dropped and field
    names are reported by their wire alias. The first error per field wins.
    """

    aliases = (
        {name: field.alias or name for name, field in model.model_fields.items()} if model else {}
    )
    messages: dict[str, str] = {}
    for error in errors:
        loc = [str(part) for part in error.get("loc", ()) if part not in _REQUEST_LOCATIONS]
        key = ".".join(aliases.get(part, part) for part in loc) or "form"
        ctx = error.get("ctx") or {}
        if error.get("type") == "value_error" and ctx.get("error") is not None:
            message = str(ctx["error"])
        else:
            message = str(error.get("msg", "Invalid value"))
        messages.setdefault(key, message)
    return messages
