"""Exception hierarchy for the audiobook assembler."""


class AssemblerError(Exception):
    """Base exception for all assembler errors."""


class ConfigError(AssemblerError):
    """Invalid or missing configuration."""


class MissingDependencyError(AssemblerError):
    """A required external tool (ffmpeg, MP4Box, ImageMagick) is not on PATH."""

    def __init__(self, tool: str) -> None:
        super().__init__(f"Required tool not found: {tool}")
        self.tool = tool


class StageError(AssemblerError):
    """A pipeline stage failed."""

    def __init__(self, message: str, stage: str) -> None:
        super().__init__(message)
        self.stage = stage


class ExternalToolError(AssemblerError):
    """An external subprocess (ffmpeg, MP4Box, etc.) failed."""

    def __init__(self, tool: str, exit_code: int, stderr: str) -> None:
        super().__init__(f"{tool} exited with code {exit_code}: {stderr}")
        self.tool = tool
        self.exit_code = exit_code
        self.stderr = stderr
