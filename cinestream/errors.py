from __future__ import annotations


class CineStreamError(Exception):
    pass


class UnlockError(CineStreamError):
    """Any failure inside the Real-Debrid unlock pipeline."""


class RemoteError(UnlockError):
    def __init__(self, status: int, body: str = "") -> None:
        self.status = status
        self.body = body
        if status:
            msg = f"real-debrid request failed ({status}): {body}"
        else:
            msg = f"real-debrid unreachable: {body}"
        super().__init__(msg)


class EmptyHandle(UnlockError):
    def __init__(self) -> None:
        super().__init__("real-debrid returned empty torrent id")


class InvalidSelection(UnlockError):
    def __init__(self, file_id: int) -> None:
        self.file_id = file_id
        super().__init__(f"invalid torrent file id: {file_id}")


class MetadataTimeout(UnlockError):
    def __init__(self, attempts: int) -> None:
        self.attempts = attempts
        super().__init__(f"torrent metadata did not become available after {attempts} attempts")


class LinksTimeout(UnlockError):
    def __init__(self, attempts: int) -> None:
        self.attempts = attempts
        super().__init__(f"timeout waiting for debrid links after {attempts} attempts")


class EmptyDownloadURL(UnlockError):
    def __init__(self) -> None:
        super().__init__("real-debrid returned empty download link")


class Cancelled(UnlockError):
    def __init__(self, stage: str = "") -> None:
        self.stage = stage
        super().__init__(f"cancelled while {stage}" if stage else "cancelled")


class LifecycleError(UnlockError):
    pass


class NoPlayableSource(CineStreamError):
    def __init__(self) -> None:
        super().__init__("stream does not include a playable URL")


class PlayerError(CineStreamError):
    pass
