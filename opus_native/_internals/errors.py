"""Build errors. Every one of these aborts the build."""


class OpusBuildError(Exception):
    """Base class for fatal build pipeline errors."""


def _with_detail(message: str, detail: str) -> str:
    return f"{message}: {detail}" if detail else message


class CloneError(OpusBuildError):
    """Raised when the upstream repository cannot be cloned."""

    def __init__(self, url: str, path, detail: str = ""):
        self.url = url
        self.path = path
        super().__init__(_with_detail(f"Failed to clone {url} into {path}", detail))


class RevisionNotFoundError(OpusBuildError):
    """Raised when the pinned tag cannot be resolved to a revision."""

    def __init__(self, version: str, detail: str = ""):
        self.version = version
        super().__init__(_with_detail(f"Failed to find {version} tag", detail))


class CheckoutError(OpusBuildError):
    """Raised when the resolved revision cannot be checked out."""

    def __init__(self, version: str, detail: str = ""):
        self.version = version
        super().__init__(_with_detail(f"Failed to checkout {version}", detail))


class StaleSourceError(OpusBuildError):
    """Raised when a cached source tree is not at the pinned revision."""

    def __init__(self, path, version: str, detail: str = ""):
        self.path = path
        self.version = version
        message = (
            f"Cached Opus source at {path} is not at {version}"
            f" ({detail}); remove the directory to re-clone"
        )
        super().__init__(message)


class CompilationError(OpusBuildError):
    """Raised when the native compiler fails. Carries its diagnostic verbatim."""

    def __init__(self, stage: str, diagnostic: str):
        self.stage = stage
        self.diagnostic = diagnostic
        super().__init__(f"Native {stage} failed:\n{diagnostic}")


class BindingGenerationError(OpusBuildError):
    """Raised when headers cannot be preprocessed or parsed."""

    def __init__(self, subject: str, detail: str):
        self.subject = subject
        super().__init__(f"Unable to generate bindings for {subject}: {detail}")
