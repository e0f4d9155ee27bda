from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field
from typing_extensions import Annotated


Role = Literal["system", "user", "assistant"]


class _WireModel(BaseModel):
    # Accept the camelCase names the browser client sends as well as snake_case.
    model_config = ConfigDict(populate_by_name=True)


class TextPart(_WireModel):
    type: Literal["text"] = "text"
    text: str = ""


class ImagePart(_WireModel):
    type: Literal["image"] = "image"
    image: str


class CodePart(_WireModel):
    type: Literal["code"] = "code"
    text: str = ""


ContentPart = Annotated[Union[TextPart, ImagePart, CodePart], Field(discriminator="type")]


class SandboxResult(_WireModel):
    sbx_id: str = Field(alias="sbxId")
    url: Optional[str] = None
    template: str


class Message(_WireModel):
    role: Role
    content: List[ContentPart] = []
    object: Optional[Dict[str, Any]] = None
    result: Optional[SandboxResult] = None


class FragmentFile(_WireModel):
    file_path: str
    file_content: str = ""


class Fragment(BaseModel):
    """Structured output produced by one generation.

    ``code`` is either a single file body (paired with ``file_path``) or a
    list of files.
    """

    model_config = ConfigDict(frozen=True)

    commentary: Optional[str] = None
    template: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    additional_dependencies: Optional[List[str]] = None
    has_additional_dependencies: Optional[bool] = None
    install_dependencies_command: Optional[str] = None
    port: Optional[int] = None
    file_path: Optional[str] = None
    code: Optional[Union[str, List[FragmentFile]]] = None

    def files(self) -> List[Tuple[str, str]]:
        if isinstance(self.code, list):
            return [(f.file_path, f.file_content or "") for f in self.code if f.file_path]
        if self.file_path and self.code:
            return [(self.file_path, self.code)]
        return []


class ModelSelector(_WireModel):
    id: str
    provider: str = ""
    provider_id: str = Field(alias="providerId")
    name: str = ""
    multi_modal: bool = Field(default=False, alias="multiModal")


class ModelConfig(_WireModel):
    model: Optional[str] = None
    api_key: Optional[str] = Field(default=None, alias="apiKey")
    base_url: Optional[str] = Field(default=None, alias="baseURL")
    temperature: Optional[float] = None
    top_p: Optional[float] = Field(default=None, alias="topP")
    top_k: Optional[int] = Field(default=None, alias="topK")
    frequency_penalty: Optional[float] = Field(default=None, alias="frequencyPenalty")
    presence_penalty: Optional[float] = Field(default=None, alias="presencePenalty")
    max_tokens: Optional[int] = Field(default=None, alias="maxTokens")

    def generation_params(self) -> Dict[str, Any]:
        """Generation parameters other than the model name and credentials."""
        params = self.model_dump(exclude={"model", "api_key", "base_url"}, exclude_none=True)
        return params


class TemplateSpec(_WireModel):
    name: str
    lib: List[str] = []
    file: Optional[str] = None
    instructions: str
    port: Optional[int] = None


class GenerationRequest(_WireModel):
    messages: List[Message]
    user_id: Optional[str] = Field(default=None, alias="userID")
    team_id: Optional[str] = Field(default=None, alias="teamID")
    template: Dict[str, TemplateSpec]
    model: ModelSelector
    config: ModelConfig = ModelConfig()


class ErrorBody(BaseModel):
    error: str
    message: str
    incident_id: Optional[str] = None


class ExportRequest(BaseModel):
    fragment: Fragment


class ModelOption(BaseModel):
    id: str
    provider: str
    provider_id: str
    name: str
    multi_modal: bool = False
    available: bool


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    reset: int
