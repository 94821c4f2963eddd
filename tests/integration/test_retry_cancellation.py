"""
tests/integration/test_retry_cancellation.py

Integration tests for the retry loops resources run while an upstream
precondition settles (non-empty project, certificate in use, VPC with
members, non-empty bucket): each one stops as soon as the operation is
canceled and gives up once its deadline passes.
DigitalOcean API calls are intercepted by respx; Spaces calls go to the
MagicMock S3 client.
"""

from __future__ import annotations

import asyncio

import httpx
import pytest
from botocore.exceptions import ClientError

from exceptions import OperationCanceledError, ResourceOperationError, WaitTimeoutError
from resources import engine
from resources.certificate import CertificateResource
from resources.project import ProjectResource
from resources.spaces import SpacesBucketResource
from resources.vpc import VPCResource

_API = "https://api.digitalocean.com"
_PROJECT = "4e1bfbc3-dc3e-41f2-a18f-1b4d7ba71679"
_VPC = "5a4981aa-9653-4bd1-bef5-d6bff52042e4"


def _project_not_empty():
    return httpx.Response(412, json={"id": "precondition_failed", "message": "cannot delete a project with resources"})


def _bucket_not_empty():
    return ClientError(
        {"Error": {"Code": "BucketNotEmpty", "Message": "bucket not empty"}, "ResponseMetadata": {"HTTPStatusCode": 409}},
        "DeleteBucket",
    )


def _canceled():
    cancel = asyncio.Event()
    cancel.set()
    return cancel


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_canceled_project_delete_sends_nothing(mock_http, combined_client):
    delete = mock_http.delete(f"{_API}/v2/projects/{_PROJECT}").mock(return_value=_project_not_empty())

    with pytest.raises(OperationCanceledError):
        await engine.delete(
            ProjectResource(), _PROJECT, {"name": "my-web-api"}, combined_client,
            timeouts={"delete": 1.0}, cancel=_canceled(),
        )

    assert delete.call_count == 0


@pytest.mark.asyncio
async def test_project_delete_stops_retrying_once_canceled(mock_http, combined_client):
    cancel = asyncio.Event()

    def not_empty_then_cancel(request):
        cancel.set()
        return _project_not_empty()

    delete = mock_http.delete(f"{_API}/v2/projects/{_PROJECT}").mock(side_effect=not_empty_then_cancel)

    with pytest.raises(OperationCanceledError):
        await engine.delete(
            ProjectResource(), _PROJECT, {"name": "my-web-api"}, combined_client,
            timeouts={"delete": 60.0}, cancel=cancel,
        )

    assert delete.call_count == 1


@pytest.mark.asyncio
async def test_vpc_delete_stops_retrying_once_canceled(mock_http, combined_client):
    cancel = asyncio.Event()

    def in_use_then_cancel(request):
        cancel.set()
        return httpx.Response(403, json={"id": "forbidden", "message": "VPC has members"})

    delete = mock_http.delete(f"{_API}/v2/vpcs/{_VPC}").mock(side_effect=in_use_then_cancel)

    with pytest.raises(OperationCanceledError):
        await engine.delete(VPCResource(), _VPC, {"name": "default-nyc3"}, combined_client, cancel=cancel)

    assert delete.call_count == 1


@pytest.mark.asyncio
async def test_certificate_delete_stops_retrying_once_canceled(mock_http, combined_client):
    cancel = asyncio.Event()
    mock_http.get(f"{_API}/v2/certificates").mock(
        return_value=httpx.Response(200, json={"certificates": [{"id": "cert-1", "name": "web-cert"}], "links": {}})
    )

    def in_use_then_cancel(request):
        cancel.set()
        return httpx.Response(
            403, json={"id": "forbidden", "message": "Make sure the certificate is not in use before deleting it."}
        )

    delete = mock_http.delete(f"{_API}/v2/certificates/cert-1").mock(side_effect=in_use_then_cancel)

    with pytest.raises(OperationCanceledError):
        await engine.delete(CertificateResource(), "web-cert", {"name": "web-cert"}, combined_client, cancel=cancel)

    assert delete.call_count == 1


@pytest.mark.asyncio
async def test_canceled_bucket_create_sends_nothing(combined_client, s3_client):
    with pytest.raises(OperationCanceledError):
        await engine.create(SpacesBucketResource(), {"name": "assets", "region": "nyc3"}, combined_client, cancel=_canceled())

    s3_client.create_bucket.assert_not_called()


# ---------------------------------------------------------------------------
# Deadlines
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_project_delete_gives_up_at_its_deadline(mock_http, combined_client):
    delete = mock_http.delete(f"{_API}/v2/projects/{_PROJECT}").mock(return_value=_project_not_empty())

    with pytest.raises(ResourceOperationError, match="timeout while retrying") as exc_info:
        await engine.delete(ProjectResource(), _PROJECT, {"name": "my-web-api"}, combined_client, timeouts={"delete": 0.0})

    assert isinstance(exc_info.value.cause, WaitTimeoutError)
    assert delete.call_count == 1


@pytest.mark.asyncio
async def test_force_destroy_of_bucket_that_never_empties_times_out(combined_client, s3_client):
    s3_client.delete_bucket.side_effect = _bucket_not_empty()
    s3_client.list_object_versions.return_value = {}
    prior = {"name": "assets", "region": "nyc3", "force_destroy": True}

    with pytest.raises(ResourceOperationError) as exc_info:
        await engine.delete(SpacesBucketResource(), "assets", prior, combined_client, timeouts={"delete": 0.0})

    assert isinstance(exc_info.value.cause, WaitTimeoutError)
    assert s3_client.delete_bucket.call_count == 1
    s3_client.delete_objects.assert_not_called()


@pytest.mark.asyncio
async def test_force_destroy_retries_until_listing_catches_up(combined_client, s3_client):
    s3_client.delete_bucket.side_effect = [_bucket_not_empty(), _bucket_not_empty(), {}]
    s3_client.list_object_versions.side_effect = [
        {"Versions": [{"Key": "a", "VersionId": "1"}]},
        {},
    ]
    prior = {"name": "assets", "region": "nyc3", "force_destroy": True}

    result = await engine.delete(SpacesBucketResource(), "assets", prior, combined_client)

    assert result.gone
    assert s3_client.delete_bucket.call_count == 3
    assert s3_client.delete_objects.call_count == 1


@pytest.mark.asyncio
async def test_canceled_force_destroy_stops(combined_client, s3_client):
    s3_client.delete_bucket.side_effect = _bucket_not_empty()
    prior = {"name": "assets", "region": "nyc3", "force_destroy": True}

    with pytest.raises(OperationCanceledError):
        await engine.delete(SpacesBucketResource(), "assets", prior, combined_client, cancel=_canceled())

    s3_client.delete_bucket.assert_not_called()
