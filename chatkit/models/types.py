from typing import Any, Final, TypeAlias

from pydantic import BaseModel

UserIdentity: TypeAlias = str

# Receiver name reserved for the shared public room
PUBLIC_CHANNEL: Final[str] = ""


class CompactBaseModel(BaseModel):
    """Base model that excludes unset and None values during serialization."""

    def model_dump(self, **kwargs: Any) -> dict[str, Any]:
        kwargs.setdefault("exclude_unset", True)
        kwargs.setdefault("exclude_none", True)
        kwargs.setdefault("mode", "json")  # Converts datetime, etc. to JSON-serializable types
        return super().model_dump(**kwargs)

    def model_dump_json(self, **kwargs: Any) -> str:
        kwargs.setdefault("exclude_unset", True)
        kwargs.setdefault("exclude_none", True)
        return super().model_dump_json(**kwargs)
