"""Target graph, typed commands and the incremental scheduler."""

from .commands import Command, CommandRegistry, FunctionCommand, ValueCommand
from .errors import (
	CycleDetected,
	DuplicateName,
	ExecutionFailure,
	MissingDependency,
	PlanError,
	StoreUnavailable,
	UnknownCommand,
	UnknownTarget,
	UnstorableResult,
)
from .graph import Target, TargetContext, TargetGraph
from .models import PlanConfig
from .run_record import RunRecord, TargetReport
from .scheduler import CancellationToken, Scheduler, default_executor

__all__ = [
	"CancellationToken",
	"Command",
	"CommandRegistry",
	"CycleDetected",
	"DuplicateName",
	"ExecutionFailure",
	"FunctionCommand",
	"MissingDependency",
	"PlanConfig",
	"PlanError",
	"RunRecord",
	"Scheduler",
	"StoreUnavailable",
	"Target",
	"TargetContext",
	"TargetGraph",
	"TargetReport",
	"UnknownCommand",
	"UnknownTarget",
	"UnstorableResult",
	"ValueCommand",
	"default_executor",
]
