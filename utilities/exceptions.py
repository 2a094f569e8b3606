class CriCommandError(Exception):
    """A call into the container runtime failed."""

    def __init__(self, command: str, stderr: str):
        self.command = command
        self.stderr = stderr
        super().__init__(f"{command} failed: {stderr}")


class ImageNotFoundError(Exception):
    pass


class ImageValidationError(Exception):
    """Observed image state diverges from the expected contract."""


class ImageStatusMismatchError(ImageValidationError):
    pass


class ImageListMismatchError(ImageValidationError):
    pass


class ContainerStateTimeoutError(Exception):
    pass


class ContainerExitCodeError(Exception):
    pass


class StressRunError(Exception):
    pass
