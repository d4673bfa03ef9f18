"""
Parquet build store implementation using Polars.

Each collection is one Parquet file under the data directory. The tables are
held in memory as Polars DataFrames; every mutation builds the new frame,
writes it to disk and only then replaces the in-memory copy, so a failed
write leaves the store unchanged.

Build output logs are kept out of the builds table, one text file per build
in `<builds_collection>-output/`, so flushing a running build's output only
rewrites that build's log.
"""

import asyncio
import logging
import os
from pathlib import Path
from typing import Dict, List, Literal, Optional

import polars as pl

from ..models.build import Build, BuildState, Project
from .base import BuildStore

logger = logging.getLogger(__name__)

PROJECT_SCHEMA: Dict[str, pl.DataType] = {
    "id": pl.Utf8,
    "name": pl.Utf8,
    "git": pl.Utf8,
    "branch": pl.Utf8,
    "trigger": pl.Utf8,
    "timeout": pl.Int64,
    "pre_deployment_script": pl.Utf8,
    "post_deployment_script": pl.Utf8,
    "deployment_path": pl.Utf8,
    "deployment_root": pl.Utf8,
    "install_command": pl.Utf8,
    "test_command": pl.Utf8,
    "last_build": pl.Int64,
}

BUILD_SCHEMA: Dict[str, pl.DataType] = {
    "id": pl.Utf8,
    "project_id": pl.Utf8,
    "name": pl.Utf8,
    "git": pl.Utf8,
    "branch": pl.Utf8,
    "timeout": pl.Int64,
    "number": pl.Int64,
    "time": pl.Int64,
    "state": pl.Utf8,
    "pre_deployment_script": pl.Utf8,
    "post_deployment_script": pl.Utf8,
    "deployment_path": pl.Utf8,
    "deployment_root": pl.Utf8,
    "install_command": pl.Utf8,
    "test_command": pl.Utf8,
}


def _to_frame(rows: List[dict], schema: Dict[str, pl.DataType]) -> pl.DataFrame:
    if not rows:
        return pl.DataFrame(schema=schema)
    return pl.from_dicts([{key: row.get(key) for key in schema} for row in rows], schema=schema)


def _conform(df: pl.DataFrame, schema: Dict[str, pl.DataType]) -> pl.DataFrame:
    """Add missing columns as nulls and order/cast columns to the schema."""
    missing = [pl.lit(None, dtype=dtype).alias(name) for name, dtype in schema.items() if name not in df.columns]
    if missing:
        df = df.with_columns(missing)
    return df.select([pl.col(name).cast(dtype) for name, dtype in schema.items()])


class ParquetBuildStore(BuildStore):
    """
    BuildStore persisting projects and builds as compressed Parquet files.
    """

    def __init__(
        self,
        data_dir: Path,
        builds_collection: str = "builds",
        projects_collection: str = "projects",
        compression: Literal["snappy", "gzip", "brotli", "lz4", "zstd"] = "snappy",
        reconnect_interval: float = 5.0,
    ):
        super().__init__(reconnect_interval)
        self.data_dir = Path(data_dir)
        self.builds_path = self.data_dir / f"{builds_collection}.parquet"
        self.projects_path = self.data_dir / f"{projects_collection}.parquet"
        self.output_dir = self.data_dir / f"{builds_collection}-output"
        self.compression = compression
        self._builds = pl.DataFrame(schema=BUILD_SCHEMA)
        self._projects = pl.DataFrame(schema=PROJECT_SCHEMA)
        self._lock = asyncio.Lock()
        logger.debug(f"Initialized ParquetBuildStore in {self.data_dir} with compression: {compression}")

    # --- File I/O ---

    async def _run_io(self, func, *args):
        return await asyncio.get_running_loop().run_in_executor(None, func, *args)

    def _load_table(self, path: Path, schema: Dict[str, pl.DataType]) -> pl.DataFrame:
        if not path.exists():
            return pl.DataFrame(schema=schema)
        df = pl.read_parquet(path)
        logger.debug(f"Loaded {len(df)} rows from {path}")
        return _conform(df, schema)

    def _write_table(self, df: pl.DataFrame, path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(path.suffix + ".tmp")
        df.write_parquet(tmp_path, compression=self.compression)
        os.replace(tmp_path, path)
        logger.debug(f"Saved {len(df)} rows to {path}")

    def _output_path(self, build_id: str) -> Path:
        return self.output_dir / f"{build_id}.log"

    def _write_output(self, build_id: str, output: str) -> None:
        path = self._output_path(build_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(".log.tmp")
        tmp_path.write_text(output, encoding="utf-8")
        os.replace(tmp_path, path)

    def _read_output(self, build_id: str) -> str:
        path = self._output_path(build_id)
        if not path.exists():
            return ""
        return path.read_text(encoding="utf-8")

    async def _to_build(self, row: dict) -> Build:
        build = Build.from_dict(row)
        build.output = await self._run_io(self._read_output, build.id)
        return build

    async def _commit_builds(self, df: pl.DataFrame) -> None:
        await self._run_io(self._write_table, df, self.builds_path)
        self._builds = df

    async def _commit_projects(self, df: pl.DataFrame) -> None:
        await self._run_io(self._write_table, df, self.projects_path)
        self._projects = df

    # --- Backend interface ---

    async def _connect(self) -> None:
        await self._run_io(lambda: self.data_dir.mkdir(parents=True, exist_ok=True))
        self._projects = await self._run_io(self._load_table, self.projects_path, PROJECT_SCHEMA)
        self._builds = await self._run_io(self._load_table, self.builds_path, BUILD_SCHEMA)
        logger.info(
            f"Loaded {len(self._projects)} projects and {len(self._builds)} builds from {self.data_dir}"
        )

    async def _disconnect(self) -> None:
        pass

    async def _register_project(self, project: Project) -> Project:
        async with self._lock:
            existing = self._projects.filter(pl.col("trigger") == project.trigger)
            data = project.to_dict()
            if existing.height:
                row = existing.row(0, named=True)
                data["id"] = row["id"]
                data["last_build"] = row["last_build"]
            df = pl.concat([
                self._projects.filter(pl.col("trigger") != project.trigger),
                _to_frame([data], PROJECT_SCHEMA),
            ])
            await self._commit_projects(df)
            return Project.from_dict(data)

    async def _list_projects(self) -> List[Project]:
        async with self._lock:
            return [Project.from_dict(row) for row in self._projects.iter_rows(named=True)]

    async def _increment_and_fetch_project_counter(self, trigger: str) -> Optional[Project]:
        async with self._lock:
            mask = pl.col("trigger") == trigger
            if self._projects.filter(mask).height == 0:
                return None
            df = self._projects.with_columns(
                pl.when(mask)
                .then(pl.col("last_build") + 1)
                .otherwise(pl.col("last_build"))
                .alias("last_build")
            )
            await self._commit_projects(df)
            return Project.from_dict(df.filter(mask).row(0, named=True))

    async def _insert_build(self, build: Build) -> Build:
        async with self._lock:
            if build.output:
                await self._run_io(self._write_output, build.id, build.output)
            df = pl.concat([self._builds, _to_frame([build.to_dict()], BUILD_SCHEMA)])
            await self._commit_builds(df)
            return build

    async def _save_build(self, build: Build) -> None:
        async with self._lock:
            await self._run_io(self._write_output, build.id, build.output)
            df = pl.concat([
                self._builds.filter(pl.col("id") != build.id),
                _to_frame([build.to_dict()], BUILD_SCHEMA),
            ])
            await self._commit_builds(df)

    async def _save_build_output(self, build_id: str, output: str) -> bool:
        async with self._lock:
            if self._builds.filter(pl.col("id") == build_id).height == 0:
                return False
            await self._run_io(self._write_output, build_id, output)
            return True

    async def _set_build_state(self, build_id: str, state: BuildState) -> Optional[Build]:
        async with self._lock:
            mask = pl.col("id") == build_id
            if self._builds.filter(mask).height == 0:
                return None
            df = self._builds.with_columns(
                pl.when(mask)
                .then(pl.lit(state.value))
                .otherwise(pl.col("state"))
                .alias("state")
            )
            await self._commit_builds(df)
            return await self._to_build(df.filter(mask).row(0, named=True))

    async def _get_build(self, build_id: str) -> Optional[Build]:
        async with self._lock:
            found = self._builds.filter(pl.col("id") == build_id)
            if found.height == 0:
                return None
            return await self._to_build(found.row(0, named=True))

    async def _find_builds(self, state: Optional[BuildState]) -> List[Build]:
        async with self._lock:
            df = self._builds
            if state is not None:
                df = df.filter(pl.col("state") == state.value)
            df = df.sort(["number", "time"])
            return [await self._to_build(row) for row in df.iter_rows(named=True)]

    async def _find_pending_build_ordered(self) -> Optional[Build]:
        async with self._lock:
            found = (
                self._builds
                .filter(pl.col("state") == BuildState.PENDING.value)
                .sort(["number", "time"])
                .head(1)
            )
            if found.height == 0:
                return None
            return await self._to_build(found.row(0, named=True))
