"""
Azure Cosmos DB database service layer

Thin async facade over the Cosmos SQL API used by the submission store.
Includes retry with exponential backoff, RU monitoring and ETag guarded
replaces for optimistic concurrency.
"""

import asyncio
import time
from typing import Any, Dict, List, Optional
from azure.core import MatchConditions
from azure.cosmos import ContainerProxy, DatabaseProxy, PartitionKey
from azure.cosmos.exceptions import (
    CosmosResourceNotFoundError,
    CosmosHttpResponseError,
    CosmosResourceExistsError,
    CosmosAccessConditionFailedError
)
import logging
from constants import CONTAINER

logger = logging.getLogger(__name__)


class CosmosDBMetrics:
    """Class to track Cosmos DB metrics and performance"""

    def __init__(self):
        self.reset()

    def reset(self):
        self.total_request_charge = 0.0
        self.operation_count = 0
        self.operation_times = []

    def record_operation(self, request_charge: float, duration_ms: float, operation_type: str):
        """Record an operation's metrics"""
        self.total_request_charge += request_charge
        self.operation_count += 1
        self.operation_times.append(duration_ms)

        logger.debug(f"Cosmos DB {operation_type}: {request_charge} RU, {duration_ms:.2f}ms")

    def get_average_ru_per_operation(self) -> float:
        return self.total_request_charge / self.operation_count if self.operation_count > 0 else 0.0

    def get_average_duration(self) -> float:
        return sum(self.operation_times) / len(self.operation_times) if self.operation_times else 0.0

    def as_dict(self) -> Dict[str, Any]:
        return {
            "total_request_charge": self.total_request_charge,
            "operation_count": self.operation_count,
            "average_ru_per_operation": self.get_average_ru_per_operation(),
            "average_duration_ms": self.get_average_duration()
        }


# Global metrics instance for monitoring
cosmos_metrics = CosmosDBMetrics()


class CosmosRetryConfig:
    """Configuration for Cosmos DB retry logic"""
    MAX_RETRIES = 3
    INITIAL_DELAY = 1.0  # seconds
    MAX_DELAY = 10.0     # seconds
    BACKOFF_MULTIPLIER = 2.0

    # HTTP status codes that should trigger a retry
    RETRYABLE_STATUS_CODES = {429, 503, 408, 500, 502, 504}


async def cosmos_retry_wrapper(operation, *args, operation_type: str = "unknown", **kwargs):
    """
    Run a Cosmos DB operation with exponential backoff on throttling and transient errors.
    Precondition failures (412) and other client errors are raised immediately.
    """
    config = CosmosRetryConfig()
    start_time = time.time()

    for attempt in range(config.MAX_RETRIES + 1):
        try:
            if asyncio.iscoroutinefunction(operation):
                result = await operation(*args, **kwargs)
            else:
                result = operation(*args, **kwargs)
        except CosmosHttpResponseError as e:
            if e.status_code not in config.RETRYABLE_STATUS_CODES or attempt == config.MAX_RETRIES:
                raise

            delay = min(config.INITIAL_DELAY * (config.BACKOFF_MULTIPLIER ** attempt), config.MAX_DELAY)
            # For throttling (429), respect the retry-after header if present
            if e.status_code == 429:
                retry_after = (e.headers or {}).get('x-ms-retry-after-ms')
                if retry_after:
                    delay = max(delay, float(retry_after) / 1000.0)

            logger.warning(
                f"Cosmos DB {operation_type} failed (attempt {attempt + 1}/{config.MAX_RETRIES + 1}): "
                f"{e.status_code}. Retrying in {delay}s"
            )
            await asyncio.sleep(delay)
            continue

        duration_ms = (time.time() - start_time) * 1000
        request_charge = 0.0
        headers = getattr(result, 'headers', None)
        if headers and 'x-ms-request-charge' in headers:
            request_charge = float(headers['x-ms-request-charge'])
        cosmos_metrics.record_operation(request_charge, duration_ms, operation_type)
        if request_charge > 50.0:
            logger.warning(f"High RU operation: {operation_type} consumed {request_charge} RU")
        return result


def _build_filter(filter_dict: Optional[Dict[str, Any]]):
    conditions = []
    parameters = []
    for key, value in (filter_dict or {}).items():
        param_name = f"@{key}"
        conditions.append(f"c.{key} = {param_name}")
        parameters.append({"name": param_name, "value": value})
    return conditions, parameters


class CosmosDBService:
    """Service layer for Azure Cosmos DB operations"""

    def __init__(self, database_client: DatabaseProxy):
        self.database_client = database_client
        self._containers = {}

    def get_container(self, container_name: str) -> ContainerProxy:
        """Get or create container client"""
        if container_name not in self._containers:
            self._containers[container_name] = self.database_client.get_container_client(container_name)
        return self._containers[container_name]

    async def ensure_containers_exist(self):
        """Ensure required containers exist with proper partition keys and indexing."""
        containers_config = {
            CONTAINER["ASSESSMENTS"]: {"pk": "/id"},
            CONTAINER["SUBMISSIONS"]: {"pk": "/assessment_id", "index_policy": {
                "indexingMode": "consistent",
                "automatic": True,
                "includedPaths": [{"path": "/*"}],
                "excludedPaths": [
                    {"path": "/analytics/*"},
                    {"path": "/section_scores/*"},
                    {"path": "/\"_etag\"/?"}
                ]
            }},
            CONTAINER["ANSWERS"]: {"pk": "/submission_id", "index_policy": {
                "indexingMode": "consistent",
                "automatic": True,
                "includedPaths": [{"path": "/*"}],
                "excludedPaths": [
                    {"path": "/code/?"},
                    {"path": "/coding_result/*"},
                    {"path": "/\"_etag\"/?"}
                ]
            }},
        }
        for container_name, cfg in containers_config.items():
            try:
                container = self.database_client.get_container_client(container_name)
                container.read()
                logger.info(f"Container '{container_name}' already exists")
            except CosmosResourceNotFoundError:
                create_kwargs = {
                    "id": container_name,
                    "partition_key": PartitionKey(path=cfg["pk"]),
                }
                if "index_policy" in cfg:
                    create_kwargs["indexing_policy"] = cfg["index_policy"]
                try:
                    self.database_client.create_container(**create_kwargs)
                    logger.info(f"Created container '{container_name}' with pk '{cfg['pk']}'")
                except CosmosHttpResponseError as e:
                    logger.error(f"Failed to create container '{container_name}': {e}")
                    raise

    # CRUD Operations

    async def create_item(self, container_name: str, item: Dict[str, Any]) -> Dict[str, Any]:
        """Create a new item; raises CosmosResourceExistsError on duplicate id"""
        container = self.get_container(container_name)
        try:
            response = await cosmos_retry_wrapper(container.create_item, body=item, operation_type="create")
            logger.info(f"Created item in '{container_name}': {response.get('id')}")
            return response
        except CosmosResourceExistsError:
            logger.warning(f"Item already exists in '{container_name}': {item.get('id')}")
            raise
        except CosmosHttpResponseError as e:
            logger.error(f"Failed to create item in '{container_name}': {e}")
            raise

    async def read_item(self, container_name: str, item_id: str, partition_key: str) -> Optional[Dict[str, Any]]:
        """Read a specific item by ID and partition key"""
        container = self.get_container(container_name)
        try:
            return await cosmos_retry_wrapper(
                container.read_item, item=item_id, partition_key=partition_key, operation_type="read"
            )
        except CosmosResourceNotFoundError:
            return None
        except CosmosHttpResponseError as e:
            logger.error(f"Failed to read item '{item_id}' from '{container_name}': {e}")
            raise

    async def upsert_item(self, container_name: str, item: Dict[str, Any]) -> Dict[str, Any]:
        """Insert or update an item"""
        container = self.get_container(container_name)
        try:
            response = await cosmos_retry_wrapper(container.upsert_item, body=item, operation_type="upsert")
            logger.debug(f"Upserted item in '{container_name}': {response.get('id')}")
            return response
        except CosmosHttpResponseError as e:
            logger.error(f"Failed to upsert item in '{container_name}': {e}")
            raise

    async def replace_item(self, container_name: str, item: Dict[str, Any], etag: Optional[str] = None) -> Dict[str, Any]:
        """Replace an item, guarded by If-Match when an ETag is given.

        Raises CosmosAccessConditionFailedError when the stored item changed
        since ``etag`` was read.
        """
        container = self.get_container(container_name)
        kwargs = {}
        if etag:
            kwargs = {"etag": etag, "match_condition": MatchConditions.IfNotModified}
        try:
            response = await cosmos_retry_wrapper(
                container.replace_item, item=item["id"], body=item, operation_type="replace", **kwargs
            )
            logger.debug(f"Replaced item in '{container_name}': {response.get('id')}")
            return response
        except CosmosAccessConditionFailedError:
            logger.warning(f"ETag mismatch replacing '{item.get('id')}' in '{container_name}'")
            raise
        except CosmosHttpResponseError as e:
            logger.error(f"Failed to replace item '{item.get('id')}' in '{container_name}': {e}")
            raise

    async def query_items(self, container_name: str, query: str, parameters: Optional[List[Dict[str, Any]]] = None,
                          partition_key: Optional[str] = None) -> List[Dict[str, Any]]:
        """Query items using SQL syntax; cross-partition unless a partition key is given"""
        container = self.get_container(container_name)
        kwargs = {"partition_key": partition_key} if partition_key is not None else {"enable_cross_partition_query": True}
        try:
            query_results = container.query_items(query=query, parameters=parameters or [], **kwargs)
            return list(query_results)
        except CosmosHttpResponseError as e:
            logger.error(f"Query failed in '{container_name}': {e}")
            raise

    async def find_one(self, container_name: str, filter_dict: Dict[str, Any],
                       order_by: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """Find one item matching an equality filter"""
        results = await self.find_many(container_name, filter_dict, order_by=order_by, limit=1)
        return results[0] if results else None

    async def find_many(self, container_name: str, filter_dict: Dict[str, Any], order_by: Optional[str] = None,
                        limit: Optional[int] = None, partition_key: Optional[str] = None) -> List[Dict[str, Any]]:
        """Find items matching an equality filter.

        ``order_by`` is a field name, prefixed with '-' for descending order.
        """
        conditions, parameters = _build_filter(filter_dict)
        query = "SELECT * FROM c"
        if conditions:
            query += f" WHERE {' AND '.join(conditions)}"
        if order_by:
            direction = "DESC" if order_by.startswith("-") else "ASC"
            query += f" ORDER BY c.{order_by.lstrip('-')} {direction}"
        if limit:
            query += f" OFFSET 0 LIMIT {limit}"
        return await self.query_items(container_name, query, parameters, partition_key=partition_key)

    async def count_items(self, container_name: str, filter_dict: Optional[Dict[str, Any]] = None) -> int:
        """Count items in container with optional filter"""
        conditions, parameters = _build_filter(filter_dict)
        query = "SELECT VALUE COUNT(1) FROM c"
        if conditions:
            query += f" WHERE {' AND '.join(conditions)}"
        results = await self.query_items(container_name, query, parameters)
        return results[0] if results else 0

    def get_metrics(self) -> Dict[str, Any]:
        """Get current performance metrics"""
        return cosmos_metrics.as_dict()

    async def get_container_statistics(self, container_name: str) -> Dict[str, Any]:
        """Get container statistics and performance information"""
        container = self.get_container(container_name)
        try:
            properties = container.read()
            document_count = await self.count_items(container_name)
            return {
                "container_name": container_name,
                "document_count": document_count,
                "partition_key": properties.get("partitionKey", {}).get("paths", []),
            }
        except CosmosHttpResponseError as e:
            logger.error(f"Failed to get statistics for container '{container_name}': {e}")
            return {"error": str(e)}


async def get_cosmosdb_service(database_client: DatabaseProxy) -> CosmosDBService:
    """Get initialized CosmosDB service with containers"""
    service = CosmosDBService(database_client)
    await service.ensure_containers_exist()
    return service
