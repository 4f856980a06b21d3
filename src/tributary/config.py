from pydantic import BaseModel, Field


class ProcessorConfig(BaseModel):
    """Tunables for frame decoding.

    Example:
        config = ProcessorConfig(max_frame_bytes=64 * 1024)
        stream = ResponseStream(transport, request, config=config)
    """

    done_sentinel: str = "[DONE]"
    max_frame_bytes: int = Field(default=1024 * 1024, gt=0)
    normalize_newlines: bool = True
    encoding: str = "utf-8"
    primary_choice: int = Field(default=0, ge=0)

    model_config = {"frozen": True}
