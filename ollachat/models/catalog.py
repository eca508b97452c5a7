"""Models offered to the UI. apiIdentifier is the name the backend knows the model by."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from ollachat.core.frames import ModelSelection

DEFAULT_MODEL_NAME = "llama2"


class CatalogModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str
    label: str
    api_identifier: str = Field(alias="apiIdentifier")
    description: str = ""

    def selection(self) -> ModelSelection:
        return ModelSelection(id=self.id, api_identifier=self.api_identifier)

    def to_wire(self) -> dict[str, str]:
        return self.model_dump(by_alias=True)


MODELS: tuple[CatalogModel, ...] = (
    CatalogModel(
        id="llama2",
        label="Llama 2",
        api_identifier="llama2",
        description="Fast and efficient open source model",
    ),
    CatalogModel(
        id="mistral",
        label="Mistral",
        api_identifier="mistral",
        description="Powerful open source model for complex tasks",
    ),
)


def find_model(model_id: str | None) -> CatalogModel | None:
    for m in MODELS:
        if m.id == model_id:
            return m
    return None


def default_model(name: str = DEFAULT_MODEL_NAME) -> CatalogModel:
    return find_model(name) or MODELS[0]
