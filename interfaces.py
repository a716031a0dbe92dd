"""Protocol interfaces used by SessionController and the recognizers."""

from __future__ import annotations

from typing import Callable, Mapping, Optional, Protocol

from models import AudioFrame, AuthorizationStatus, RecognitionEvent, RecognizerState, ResultBatch

FrameHandler = Callable[[AudioFrame], None]
AuthorizationCallback = Callable[[AuthorizationStatus], None]


class Recorder(Protocol):
    blocksize: int

    def has_input_device(self) -> bool: ...

    def start(self, on_frame: FrameHandler) -> None: ...

    def stop(self) -> None: ...


class Recognizer(Protocol):
    provider: str
    event_handler: Callable[[RecognitionEvent], None]

    @property
    def state(self) -> RecognizerState: ...

    def is_authorized(self) -> bool: ...

    def request_authorization(self, callback: AuthorizationCallback) -> None: ...

    def start(self, on_ready: Callable[[], None]) -> None: ...

    def feed(self, frame: AudioFrame) -> None: ...

    def stop(self) -> None: ...

    def cancel(self) -> None: ...


class StreamingClient(Protocol):
    """Per-session connection to a cloud streaming recognizer."""

    def connect(
        self,
        on_batch: Callable[[ResultBatch], None],
        on_closed: Callable[[], None],
        on_error: Callable[[Exception], None],
    ) -> None: ...

    def send(self, chunk: bytes, headers: Mapping[str, str]) -> None: ...

    def end_stream(self) -> None: ...

    def close(self) -> None: ...


class ConfigStore(Protocol):
    def get_api_key(self) -> str: ...

    def set_api_key(self, key: str) -> None: ...

    def get_provider(self) -> str: ...

    def set_provider(self, provider: str) -> None: ...

    def get_cloud_model(self) -> str: ...

    def get_local_model_path(self) -> str: ...

    def get_chunk_size(self) -> int: ...

    def get_input_device(self) -> Optional[str]: ...
