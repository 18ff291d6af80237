"""Shared field types and the parse helper used by every wire schema.

Third-party wire shapes are open: unknown fields are kept (``extra="allow"``)
so newer backends never break parsing. Primitive fields are strict, so a
string never slips through where an integer is expected.
"""

from typing import Annotated, Any, TypeVar

from pydantic import BaseModel, ConfigDict, Field, StringConstraints, ValidationError
from pydantic.alias_generators import to_camel

from .errors import ProtocolValidationError

NonEmptyStr = Annotated[str, StringConstraints(strict=True, min_length=1)]
NonNegativeInt = Annotated[int, Field(strict=True, ge=0)]
StrictInt = Annotated[int, Field(strict=True)]
StrictStr = Annotated[str, Field(strict=True)]
StrictBool = Annotated[bool, Field(strict=True)]

ModelT = TypeVar("ModelT", bound=BaseModel)


class WireModel(BaseModel):
    """Open wire shape with camelCase aliases on the wire."""

    model_config = ConfigDict(
        extra="allow",
        alias_generator=to_camel,
        populate_by_name=True,
        protected_namespaces=(),
    )

    def to_wire(self) -> dict[str, Any]:
        """Dump only the fields the sender provided, under their wire names."""
        return self.model_dump(mode="json", by_alias=True, exclude_unset=True)


def parse_with_schema(model: type[ModelT], value: Any, context: str) -> ModelT:
    """Validate *value* against *model*, raising ``ProtocolValidationError``."""
    try:
        return model.model_validate(value)
    except ValidationError as e:
        raise ProtocolValidationError.from_pydantic(context, e) from e

