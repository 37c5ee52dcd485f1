"""
Local step executors.

In-process executors for every step type. They do not encode media; they
validate their inputs, simulate latency and produce the result shapes the
workflow engine and orchestrator rely on (most importantly the result URL
written by the upload step). Real deployments register their own executors
per step type.
"""

import asyncio
import math
from abc import abstractmethod
from typing import Any, Dict, List

from ..core.exceptions import ValidationError
from ..models.workflow import StepType, WorkflowContext
from ..utils.logger import get_logger
from .base import StepExecutor

SUPPORTED_OUTPUT_FORMATS = ("mp4", "mov", "webm", "mkv", "avi", "gif")


class LocalStepExecutor(StepExecutor):
    """Shared behavior of the local executors: optional simulated latency."""

    def __init__(self, latency: float = 0.0):
        self.latency = latency
        self.logger = get_logger(__name__)

    async def execute(self, context: WorkflowContext, parameters: Dict[str, Any]) -> Dict[str, Any]:
        if self.latency > 0:
            await asyncio.sleep(self.latency)
        return await self._run(context, parameters)

    @abstractmethod
    async def _run(self, context: WorkflowContext, parameters: Dict[str, Any]) -> Dict[str, Any]:
        """Step body, run after the simulated latency."""


class ValidationExecutor(LocalStepExecutor):
    step_type = StepType.VALIDATION

    async def _run(self, context, parameters):
        request = context.job_request
        if not request.elements:
            raise ValidationError("elements", "request has no content elements")
        if request.width <= 0 or request.height <= 0:
            raise ValidationError("resolution", "width and height must be positive",
                                  f"{request.width}x{request.height}")
        if request.output_format.lower() not in SUPPORTED_OUTPUT_FORMATS:
            raise ValidationError("output_format", "unsupported output format", request.output_format)

        missing = [i for i, element in enumerate(request.elements) if not element.source]
        if missing:
            raise ValidationError("elements", f"elements without source: {missing}")

        return {"valid": True, "element_count": request.element_count}


class ResourceAllocationExecutor(LocalStepExecutor):
    step_type = StepType.RESOURCE_ALLOCATION

    async def _run(self, context, parameters):
        return {
            "resource_id": context.resources.resource_id,
            "allocation": context.resources.allocation.to_dict(),
        }


class ClusterAllocationExecutor(LocalStepExecutor):
    step_type = StepType.CLUSTER_ALLOCATION

    async def _run(self, context, parameters):
        cores = context.resources.allocation.cpu_cores
        nodes = max(1, math.ceil(cores / 8))
        return {"resource_id": context.resources.resource_id, "nodes": nodes}


class MediaDownloadExecutor(LocalStepExecutor):
    step_type = StepType.MEDIA_DOWNLOAD

    async def _run(self, context, parameters):
        sources: List[str] = list(parameters.get("sources", []))
        download_path = parameters.get("download_path", "/tmp")
        files = [f"{download_path}/{index:04d}_{source.rsplit('/', 1)[-1]}"
                 for index, source in enumerate(sources)]
        context.step_data.setdefault("downloaded_files", []).extend(files)
        return {
            "files": files,
            "download_path": download_path,
            "parallel_downloads": parameters.get("parallel_downloads", 1),
        }


class ParallelDownloadExecutor(MediaDownloadExecutor):
    step_type = StepType.PARALLEL_DOWNLOAD


class AnalysisExecutor(LocalStepExecutor):
    step_type = StepType.ANALYSIS

    async def _run(self, context, parameters):
        request = context.job_request
        tracks = {element.track for element in request.elements}
        return {
            "element_count": request.element_count,
            "tracks": len(tracks),
            "effects": sum(len(element.effects) for element in request.elements),
        }


class WorkloadPartitioningExecutor(LocalStepExecutor):
    step_type = StepType.WORKLOAD_PARTITIONING

    async def _run(self, context, parameters):
        partitions = int(parameters.get("partitions", 1))
        elements = list(context.job_request.elements)
        chunks = [
            [element.source for element in elements[i::partitions]]
            for i in range(partitions)
        ]
        context.step_data["partitions"] = chunks
        return {"partitions": partitions}


class VideoProcessingExecutor(LocalStepExecutor):
    step_type = StepType.VIDEO_PROCESSING

    async def _run(self, context, parameters):
        output_format = parameters.get("output_format", context.job_request.output_format)
        work_dir = parameters.get("work_dir", "/tmp")
        output_path = f"{work_dir}/output.{output_format}"
        context.step_data["output_path"] = output_path
        return {
            "output_path": output_path,
            "gpu_enabled": parameters.get("gpu_enabled", False),
            "effects_applied": list(parameters.get("effects", [])),
        }


class DistributedVideoProcessingExecutor(VideoProcessingExecutor):
    step_type = StepType.DISTRIBUTED_VIDEO_PROCESSING

    async def _run(self, context, parameters):
        result = await super()._run(context, parameters)
        partitions = context.step_data.get("partitions") or [[]]
        result["segments"] = [f"{result['output_path']}.part{i}" for i in range(len(partitions))]
        context.step_data["segments"] = result["segments"]
        return result


class ResultMergingExecutor(LocalStepExecutor):
    step_type = StepType.RESULT_MERGING

    async def _run(self, context, parameters):
        segments = context.step_data.get("segments", [])
        return {"merged_segments": len(segments), "output_path": context.step_data.get("output_path")}


class S3UploadExecutor(LocalStepExecutor):
    """Writes the result URL and size into the workflow context."""

    step_type = StepType.S3_UPLOAD

    async def _run(self, context, parameters):
        bucket = parameters.get("bucket", "video-results")
        key = parameters.get("key", f"results/{context.job_request.job_id}/output")
        url = f"https://{bucket}.s3.amazonaws.com/{key}"
        file_size = self._estimate_file_size(context)
        context.result.update({"url": url, "file_size": file_size})
        return {"url": url, "bucket": bucket, "key": key, "file_size": file_size}

    @staticmethod
    def _estimate_file_size(context: WorkflowContext) -> int:
        request = context.job_request
        seconds = sum((element.duration or 10) for element in request.elements)
        megapixels = request.width * request.height / (1024 * 1024)
        # Roughly 4 Mbit/s per megapixel
        return int(seconds * max(megapixels, 0.1) * 500_000)


class DatabaseUpdateExecutor(LocalStepExecutor):
    step_type = StepType.DATABASE_UPDATE

    async def _run(self, context, parameters):
        return {"job_id": context.job_request.job_id, "status": parameters.get("status", "updated")}


class QueueOperationExecutor(LocalStepExecutor):
    step_type = StepType.QUEUE_OPERATION

    async def _run(self, context, parameters):
        return {"job_id": context.job_request.job_id, "queued": True}


class NotificationExecutor(LocalStepExecutor):
    step_type = StepType.NOTIFICATION

    async def _run(self, context, parameters):
        self.logger.info("Job notification", extra={
            "job_id": context.job_request.job_id,
            "channel": parameters.get("channel", "log")
        })
        return {"notified": True}


class CleanupExecutor(LocalStepExecutor):
    step_type = StepType.CLEANUP

    async def _run(self, context, parameters):
        paths = list(parameters.get("paths", []))
        removed = context.step_data.pop("downloaded_files", [])
        return {"cleaned_paths": paths, "removed_files": len(removed), "force": bool(parameters.get("force"))}


class ClusterCleanupExecutor(CleanupExecutor):
    step_type = StepType.CLUSTER_CLEANUP

    async def _run(self, context, parameters):
        result = await super()._run(context, parameters)
        context.step_data.pop("partitions", None)
        context.step_data.pop("segments", None)
        return result


LOCAL_EXECUTOR_CLASSES = (
    ValidationExecutor,
    ResourceAllocationExecutor,
    MediaDownloadExecutor,
    VideoProcessingExecutor,
    S3UploadExecutor,
    DatabaseUpdateExecutor,
    CleanupExecutor,
    QueueOperationExecutor,
    NotificationExecutor,
    AnalysisExecutor,
    WorkloadPartitioningExecutor,
    ClusterAllocationExecutor,
    ParallelDownloadExecutor,
    DistributedVideoProcessingExecutor,
    ResultMergingExecutor,
    ClusterCleanupExecutor,
)


def create_local_executors(latency: float = 0.0) -> Dict[StepType, StepExecutor]:
    """One local executor per step type."""
    return {cls.step_type: cls(latency=latency) for cls in LOCAL_EXECUTOR_CLASSES}
