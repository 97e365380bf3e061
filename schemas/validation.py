from pydantic import BaseModel, ValidationError as SchemaValidationError

from core.errors import ValidationError


def parse_request(schema: type[BaseModel], **data) -> BaseModel:
    """Validate inbound data, raising the ledger's ValidationError on failure."""
    try:
        return schema.model_validate(data)
    except SchemaValidationError as e:
        errors = [
            {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
            for err in e.errors()
        ]
        summary = "; ".join(f"{err['field']}: {err['message']}" for err in errors)
        raise ValidationError(f"Invalid {schema.__name__}: {summary}", errors) from e
