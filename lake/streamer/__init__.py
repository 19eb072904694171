from .completion import LakeCompletion, StopReason  # noqa: F401
from .pool import PreloadPool  # noqa: F401
from .service import (  # noqa: F401
    BlockStream,
    LakeStreamer,
    PipelineState,
    run,
    streamer,
)
