"""
Drive the Pulumi engine for a declared stack through the Automation API.

The engine owns diffing, ordering, retries and rollback. This module only
selects the stack, runs preview/up/destroy, and turns engine failures into
ProvisioningError so callers see a classified description.
"""

from typing import Callable, Optional

import pulumi
from pulumi import automation as auto

from config import StackConfig
from errors import ProvisioningError, ProvisioningFailure


def select_stack(config: StackConfig, program: Callable[[], None], work_dir: Optional[str] = None) -> auto.Stack:
    stack_name = f"{config.project_name}-{config.environment}"
    try:
        stack = auto.create_or_select_stack(
            stack_name=stack_name,
            project_name=config.project_name,
            program=program,
            opts=auto.LocalWorkspaceOptions(work_dir=work_dir) if work_dir else None,
        )
        if config.region:
            stack.set_config("aws:region", auto.ConfigValue(value=config.region))
    except auto.CommandError as e:
        raise _provisioning_error(e) from e
    pulumi.log.info(f"Selected stack '{stack_name}'")
    return stack


def _provisioning_error(error: Exception) -> ProvisioningError:
    failure = ProvisioningFailure.from_message(str(error))
    pulumi.log.error(f"Engine failure: {failure.describe()}")
    return ProvisioningError(failure)


def plan(stack: auto.Stack) -> auto.PreviewResult:
    try:
        result = stack.preview(on_output=pulumi.log.info)
    except auto.CommandError as e:
        raise _provisioning_error(e) from e
    pulumi.log.info(f"Planned changes: {result.change_summary}")
    return result


def apply(stack: auto.Stack) -> auto.UpResult:
    try:
        result = stack.up(on_output=pulumi.log.info)
    except auto.CommandError as e:
        raise _provisioning_error(e) from e
    pulumi.log.info(f"Applied: {result.summary.resource_changes}")
    return result


def destroy(stack: auto.Stack) -> auto.DestroyResult:
    try:
        result = stack.destroy(on_output=pulumi.log.info)
    except auto.CommandError as e:
        raise _provisioning_error(e) from e
    pulumi.log.info(f"Destroyed: {result.summary.resource_changes}")
    return result


def has_changes(preview: auto.PreviewResult) -> bool:
    return any(count for op, count in preview.change_summary.items() if op != "same")
