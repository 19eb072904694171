from importlib import metadata

from lake.config import LakeConfig  # noqa: F401
from lake.context import (  # noqa: F401
    LakeContextAPI,
    LakeContextGroup,
)
from lake.streamer import (  # noqa: F401
    BlockStream,
    LakeCompletion,
    PipelineState,
    StopReason,
    run,
    streamer,
)
from lake.typing import (  # noqa: F401
    BlockHeight,
    StreamerMessage,
)


try:
    __version__ = metadata.version("lake-framework")
except metadata.PackageNotFoundError:
    __version__ = 'unknown'
