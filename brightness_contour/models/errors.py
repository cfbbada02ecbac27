class InvalidImageDimensions(ValueError):
    """Width/height out of range or a pixel buffer whose size does not match them."""


class BackendUnavailable(RuntimeError):
    """The OpenCV backend was needed but is not in the ready state."""


class ProcessingCancelled(Exception):
    """A finished computation belongs to a request that has since been superseded."""

    def __init__(self, stage: str, generation: int, current: int):
        super().__init__(f"{stage} result from generation {generation} superseded by {current}")
        self.stage = stage
        self.generation = generation
        self.current = current
