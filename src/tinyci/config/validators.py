"""
Configuration validation utilities.

This module turns raw TOML sections into the frozen configuration models,
resolving relative paths against the directory of the main config file.
"""

import logging
from pathlib import Path
from typing import Any, Dict, List

from ..models.build import Project
from ..models.config import LoggingConfig, PipelineConfig, StoreConfig, TriggerConfig
from ..validation import (
    ValidationError,
    resolve_path,
    validate_enum_choice,
    validate_non_empty_string,
    validate_optional_string,
    validate_positive_float,
    validate_positive_integer,
)

logger = logging.getLogger(__name__)

VALID_BACKENDS = ["parquet", "memory"]
VALID_COMPRESSIONS = ["snappy", "gzip", "brotli", "lz4", "zstd"]
VALID_LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


def validate_store_config(storage_data: Dict[str, Any], config_dir: Path) -> StoreConfig:
    """
    Validate and create a StoreConfig from the `[storage]` section.

    Raises:
        ValidationError: If validation fails
    """
    backend = validate_enum_choice(
        storage_data.get("backend", "parquet"),
        valid_choices=VALID_BACKENDS,
        field_name="storage.backend",
    )
    compression = validate_enum_choice(
        storage_data.get("compression", "snappy"),
        valid_choices=VALID_COMPRESSIONS,
        field_name="storage.compression",
    )
    reconnect_interval = validate_positive_float(
        storage_data.get("reconnect_interval", 5.0),
        min_value=0.01,
        max_value=3600.0,
        field_name="storage.reconnect_interval",
    )
    return StoreConfig(
        backend=backend,
        data_dir=resolve_path(storage_data.get("data_dir", "data"), config_dir, "storage.data_dir"),
        builds_collection=validate_non_empty_string(
            storage_data.get("builds_collection", "builds"), "storage.builds_collection"
        ),
        projects_collection=validate_non_empty_string(
            storage_data.get("projects_collection", "projects"), "storage.projects_collection"
        ),
        compression=compression,
        reconnect_interval=reconnect_interval,
    )


def validate_pipeline_config(tasks_data: Dict[str, Any], config_dir: Path) -> PipelineConfig:
    """
    Validate and create a PipelineConfig from the `[tasks]` section.

    Raises:
        ValidationError: If validation fails
    """
    check_interval = validate_positive_float(
        tasks_data.get("check_interval", 1.0),
        min_value=0.01,
        max_value=3600.0,
        field_name="tasks.check_interval",
    )
    output_flush_every = validate_positive_integer(
        tasks_data.get("output_flush_every", 5),
        min_value=1,
        max_value=10000,
        field_name="tasks.output_flush_every",
    )
    return PipelineConfig(
        build_root_directory=resolve_path(
            tasks_data.get("build_root_directory", "builds"), config_dir, "tasks.build_root_directory"
        ),
        check_interval=check_interval,
        install_command=validate_non_empty_string(
            tasks_data.get("install_command", "npm install"), "tasks.install_command"
        ),
        test_command=validate_non_empty_string(
            tasks_data.get("test_command", "npm test"), "tasks.test_command"
        ),
        output_flush_every=output_flush_every,
        shell=validate_optional_string(tasks_data.get("shell"), "tasks.shell"),
    )


def validate_trigger_config(triggers_data: Dict[str, Any]) -> TriggerConfig:
    """Validate and create a TriggerConfig from the `[triggers]` section."""
    return TriggerConfig(
        host=validate_non_empty_string(triggers_data.get("host", "0.0.0.0"), "triggers.host"),
        port=validate_positive_integer(
            triggers_data.get("port", 8088),
            min_value=1,
            max_value=65535,
            field_name="triggers.port",
        ),
    )


def validate_logging_config(logging_data: Dict[str, Any]) -> LoggingConfig:
    """Validate and create a LoggingConfig from the `[logging]` section."""
    level = validate_enum_choice(
        str(logging_data.get("level", "INFO")).upper(),
        valid_choices=VALID_LOG_LEVELS,
        field_name="logging.level",
    )
    log_format = logging_data.get("format")
    if log_format is None:
        return LoggingConfig(level=level)
    return LoggingConfig(
        level=level,
        format=validate_non_empty_string(log_format, "logging.format"),
    )


def validate_projects_config(projects_data: List[Dict[str, Any]]) -> List[Project]:
    """
    Validate the project registry seed.

    Trigger keys must be unique since a trigger identifies exactly one project.

    Raises:
        ValidationError: If any project entry is invalid
    """
    projects = []
    seen_triggers = set()
    for i, project_data in enumerate(projects_data):
        prefix = f"projects[{i}]"
        if not isinstance(project_data, dict):
            raise ValidationError(f"{prefix} must be a table", field_name=prefix, value=project_data)

        trigger = validate_non_empty_string(project_data.get("trigger"), f"{prefix}.trigger")
        if trigger in seen_triggers:
            raise ValidationError(
                f"{prefix}.trigger '{trigger}' is already used by another project",
                field_name=f"{prefix}.trigger",
                value=trigger,
            )
        seen_triggers.add(trigger)

        projects.append(Project(
            name=validate_non_empty_string(project_data.get("name"), f"{prefix}.name"),
            git=validate_non_empty_string(project_data.get("git"), f"{prefix}.git"),
            branch=validate_optional_string(project_data.get("branch"), f"{prefix}.branch") or "master",
            trigger=trigger,
            timeout=validate_positive_integer(
                project_data.get("timeout", 600000),
                min_value=1,
                field_name=f"{prefix}.timeout",
            ),
            pre_deployment_script=validate_optional_string(
                project_data.get("pre_deployment_script"), f"{prefix}.pre_deployment_script"
            ),
            post_deployment_script=validate_optional_string(
                project_data.get("post_deployment_script"), f"{prefix}.post_deployment_script"
            ),
            deployment_path=validate_optional_string(
                project_data.get("deployment_path"), f"{prefix}.deployment_path"
            ),
            deployment_root=validate_optional_string(
                project_data.get("deployment_root"), f"{prefix}.deployment_root"
            ),
            install_command=validate_optional_string(
                project_data.get("install_command"), f"{prefix}.install_command"
            ),
            test_command=validate_optional_string(
                project_data.get("test_command"), f"{prefix}.test_command"
            ),
        ))

    logger.debug(f"Validated {len(projects)} project definitions")
    return projects
