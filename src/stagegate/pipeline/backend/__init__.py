"""Collaborator implementations for commands, files, reports and endpoint probes."""

from stagegate.pipeline.backend.base import (
    CommandFailed,
    CommandResult,
    CommandRunner,
    FileStore,
    FileStoreError,
    ReportSink,
    ReportSinkError,
)
from stagegate.pipeline.backend.commands import SubprocessCommandRunner
from stagegate.pipeline.backend.files import LocalFileStore
from stagegate.pipeline.backend.http import EndpointProbe, ProbeResult
from stagegate.pipeline.backend.reports import JsonReportSink, NullReportSink

__all__ = [
    "CommandFailed",
    "CommandResult",
    "CommandRunner",
    "EndpointProbe",
    "FileStore",
    "FileStoreError",
    "JsonReportSink",
    "LocalFileStore",
    "NullReportSink",
    "ProbeResult",
    "ReportSink",
    "ReportSinkError",
    "SubprocessCommandRunner",
]
