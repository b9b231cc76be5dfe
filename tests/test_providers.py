from types import SimpleNamespace
from unittest.mock import MagicMock, Mock, patch

import pytest
from azure.core.exceptions import ClientAuthenticationError, ResourceNotFoundError
from botocore.exceptions import ClientError

from truckload.exceptions import InvalidCredential, NotFound, PaginationError, UnknownPlatform
from truckload.models import Credential, Cursor, MigrationStatus, Video
from truckload.providers import PLATFORM_IDS, get_adapter
from truckload.providers.api_video import ApiVideoAdapter
from truckload.providers.azure_blob import AzureBlobAdapter
from truckload.providers.azure_media import AzureMediaServicesAdapter
from truckload.providers.base import filename_variants, looks_like_video
from truckload.providers.cloudflare_stream import CloudflareStreamAdapter
from truckload.providers.mux import MuxSourceAdapter
from truckload.providers.s3 import S3Adapter
from truckload.store.base import VideoRecord


class FakePager:
    """Stands in for an Azure ItemPaged.by_page() iterator."""

    def __init__(self, pages, continuation_token=None):
        self._pages = iter(pages)
        self.continuation_token = continuation_token

    def __iter__(self):
        return self

    def __next__(self):
        return next(self._pages)


def _named(*names):
    return [SimpleNamespace(name=name) for name in names]


def _client_error(code, operation="HeadObject"):
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


class TestFilters:
    @pytest.mark.parametrize(
        "name,expected",
        [
            ("clip.mp4", True),
            ("CLIP.MOV", True),
            ("folder/clip.mov", True),
            ("clip_draft.mp4", False),
            ("notes.txt", False),
            ("clip.mp4.txt", False),
            ("", False),
            (None, False),
        ],
    )
    def test_looks_like_video(self, name, expected):
        assert looks_like_video(name) is expected

    def test_filename_variants_order(self):
        assert filename_variants("dir/clip.mov") == [
            "dir/clip.mov",
            "dir/clip.mp4",
            "dir/clip.MP4",
            "dir/clip.MOV",
        ]


class TestRegistry:
    def test_every_platform_builds(self, store):
        for platform_id in PLATFORM_IDS:
            assert get_adapter(platform_id, store).platform_id == platform_id

    def test_adapters_are_fresh_instances(self):
        assert get_adapter("s3") is not get_adapter("s3")

    def test_unknown_platform(self):
        with pytest.raises(UnknownPlatform, match="Invalid platform provided"):
            get_adapter("vimeo")

    def test_store_backed_platform_requires_store(self):
        with pytest.raises(ValueError):
            get_adapter("azure-media-services")


@pytest.fixture
def azure_service():
    with patch("truckload.providers.azure_blob.BlobServiceClient") as service_cls:
        service = MagicMock()
        service_cls.return_value = service
        yield service


@pytest.fixture
def azure_credential():
    return Credential(public_key="acct", secret_key="a2V5", metadata={"container": "videos"})


class TestAzureBlobAdapter:
    def test_only_video_blobs_are_candidates(self, settings, azure_service, azure_credential):
        azure_service.list_containers.return_value.by_page.return_value = FakePager(
            [_named("videos")]
        )
        container = azure_service.get_container_client.return_value
        container.list_blobs.return_value.by_page.return_value = FakePager(
            [_named("clip.mp4", "clip_draft.mp4", "notes.txt")]
        )

        page = AzureBlobAdapter().fetch_page(azure_credential, None)

        assert [v.source_id for v in page.videos] == ["videos/clip.mp4"]
        assert page.videos[0].title == "clip.mp4"
        assert page.videos[0].location == "videos"
        assert page.exhausted
        assert page.next_cursor is None

    def test_drains_each_container_before_advancing(self, settings, azure_service, azure_credential):
        azure_service.list_containers.return_value.by_page.return_value = FakePager(
            [_named("a", "b")], continuation_token="next-containers"
        )
        blob_pages = {
            "a": [_named("1.mp4"), _named("2.mp4")],
            "b": [_named("3.mov")],
        }

        def container_client(name):
            client = MagicMock()
            client.list_blobs.return_value.by_page.return_value = FakePager(blob_pages[name])
            return client

        azure_service.get_container_client.side_effect = container_client

        adapter = AzureBlobAdapter()
        page = adapter.fetch_page(azure_credential, None)

        assert [v.source_id for v in page.videos] == ["a/1.mp4", "a/2.mp4", "b/3.mov"]
        assert not page.exhausted
        assert page.next_cursor.to_json() == {"containers": "next-containers"}

        adapter.fetch_page(azure_credential, page.next_cursor)
        azure_service.list_containers.return_value.by_page.assert_called_with(
            continuation_token="next-containers"
        )

    def test_validate_ok(self, settings, azure_service, azure_credential):
        azure_service.get_container_client.return_value.exists.return_value = True
        AzureBlobAdapter().validate_credential(azure_credential)
        azure_service.get_container_client.assert_called_with("videos")

    def test_validate_rejected_key(self, settings, azure_service, azure_credential):
        azure_service.get_container_client.return_value.exists.side_effect = (
            ClientAuthenticationError(message="Server failed to authenticate the request")
        )
        with pytest.raises(InvalidCredential):
            AzureBlobAdapter().validate_credential(azure_credential)

    def test_validate_missing_container(self, settings, azure_service, azure_credential):
        azure_service.get_container_client.return_value.exists.return_value = False
        with pytest.raises(InvalidCredential, match="videos"):
            AzureBlobAdapter().validate_credential(azure_credential)

    def test_validate_requires_container_metadata(self, settings, azure_service):
        with pytest.raises(InvalidCredential, match="container"):
            AzureBlobAdapter().validate_credential(Credential(public_key="acct", secret_key="k"))

    def test_fetch_video_falls_back_to_other_extension(self, settings, azure_service, azure_credential):
        def blob_client(container, blob):
            client = MagicMock()
            client.exists.return_value = blob == "clip.mp4"
            client.url = f"https://acct.blob.core.windows.net/{container}/{blob}"
            return client

        azure_service.get_blob_client.side_effect = blob_client

        with patch("truckload.providers.azure_blob.generate_blob_sas", return_value="sig=1"):
            video = AzureBlobAdapter().fetch_video(azure_credential, Video(source_id="videos/clip.mov"))

        assert video.access_url == "https://acct.blob.core.windows.net/videos/clip.mp4?sig=1"

    def test_fetch_video_not_found(self, settings, azure_service, azure_credential):
        azure_service.get_blob_client.return_value.exists.side_effect = ResourceNotFoundError(
            message="ContainerNotFound"
        )
        with pytest.raises(NotFound):
            AzureBlobAdapter().fetch_video(azure_credential, Video(source_id="videos/clip.mp4"))


class TestAzureMediaServicesAdapter:
    @pytest.fixture
    def credential(self):
        return Credential(
            public_key="client-id",
            secret_key="client-secret",
            metadata={
                "tenantId": "t",
                "subscriptionId": "s",
                "environment": "qa",
                "storageAccount": "acct",
                "storageKey": "a2V5",
            },
        )

    def test_pages_unmigrated_records_for_the_account(self, settings, store, credential):
        for uuid in ("v1", "v2", "v3"):
            store.add_video(
                VideoRecord(uuid=uuid, platform="azure-media-services", location=f"c/{uuid}.mp4", account_marker="acct")
            )
        store.add_video(
            VideoRecord(uuid="draft", platform="azure-media-services", location="c/v_draft.mp4", account_marker="acct")
        )
        store.add_video(
            VideoRecord(uuid="other", platform="azure-media-services", location="c/o.mp4", account_marker="elsewhere")
        )
        store.add_video(
            VideoRecord(
                uuid="done",
                platform="azure-media-services",
                location="c/d.mp4",
                account_marker="acct",
                status=MigrationStatus.COMPLETED,
            )
        )

        adapter = AzureMediaServicesAdapter(store=store)
        adapter.PAGE_SIZE = 2
        seen = []
        cursor = None
        while True:
            page = adapter.fetch_page(credential, cursor)
            seen.extend(v.source_id for v in page.videos)
            if page.exhausted:
                break
            cursor = page.next_cursor

        assert sorted(seen) == ["v1", "v2", "v3"]
        assert adapter.account_marker(credential) == "acct"

    def test_validate_rejects_environment_mismatch(self, settings, stores, credential):
        adapter = AzureMediaServicesAdapter(store=stores.get("dev"))
        with pytest.raises(InvalidCredential, match="qa"):
            adapter.validate_credential(credential)

    def test_validate_checks_storage_account(self, settings, store, credential, azure_service):
        AzureMediaServicesAdapter(store=store).validate_credential(credential)
        azure_service.get_account_information.assert_called_once()

    def test_validate_requires_tenant(self, settings, store, credential):
        del credential.metadata["tenantId"]
        with pytest.raises(InvalidCredential, match="tenantId"):
            AzureMediaServicesAdapter(store=store).validate_credential(credential)


@pytest.fixture
def s3_client():
    with patch("truckload.providers.s3.boto3.client") as client_factory:
        client = Mock()
        client_factory.return_value = client
        yield client


@pytest.fixture
def s3_credential():
    return Credential(
        public_key="AKIA", secret_key="secret", metadata={"bucket": "media", "region": "us-east-1"}
    )


class TestS3Adapter:
    def test_lists_video_keys_and_follows_continuation(self, settings, s3_client, s3_credential):
        s3_client.list_objects_v2.side_effect = [
            {
                "Contents": [{"Key": "a/clip.mp4"}, {"Key": "a/clip_draft.mp4"}, {"Key": "notes.txt"}],
                "IsTruncated": True,
                "NextContinuationToken": "tok",
                "KeyCount": 3,
            },
            {"Contents": [{"Key": "b/intro.MOV"}], "IsTruncated": False, "KeyCount": 1},
        ]
        adapter = S3Adapter()

        first = adapter.fetch_page(s3_credential, None)
        second = adapter.fetch_page(s3_credential, first.next_cursor)

        assert [v.source_id for v in first.videos] == ["a/clip.mp4"]
        assert first.videos[0].location == "media"
        assert not first.exhausted
        assert [v.source_id for v in second.videos] == ["b/intro.MOV"]
        assert second.exhausted
        assert s3_client.list_objects_v2.call_args.kwargs["ContinuationToken"] == "tok"

    def test_rejects_cursor_from_other_platform(self, settings, s3_client, s3_credential):
        with pytest.raises(PaginationError):
            S3Adapter().fetch_page(s3_credential, Cursor.from_json("azure", {"containers": "x"}))

    def test_fetch_video_presigns_first_existing_variant(self, settings, s3_client, s3_credential):
        s3_client.head_object.side_effect = [_client_error("404"), None]
        s3_client.generate_presigned_url.return_value = "https://media.s3/clip.mp4?X-Amz-Signature=1"

        video = S3Adapter().fetch_video(s3_credential, Video(source_id="clip.mov"))

        assert video.access_url.startswith("https://media.s3/clip.mp4")
        keys = [c.kwargs["Key"] for c in s3_client.head_object.call_args_list]
        assert keys == ["clip.mov", "clip.mp4"]

    def test_fetch_video_not_found_after_all_variants(self, settings, s3_client, s3_credential):
        s3_client.head_object.side_effect = _client_error("404")
        with pytest.raises(NotFound):
            S3Adapter().fetch_video(s3_credential, Video(source_id="clip.mp4"))
        assert s3_client.head_object.call_count == len(filename_variants("clip.mp4"))

    def test_validate_ok(self, settings, s3_client, s3_credential):
        S3Adapter().validate_credential(s3_credential)
        s3_client.head_bucket.assert_called_once_with(Bucket="media")

    @pytest.mark.parametrize("code", ["403", "InvalidAccessKeyId", "NoSuchBucket"])
    def test_validate_invalid(self, settings, s3_client, s3_credential, code):
        s3_client.head_bucket.side_effect = _client_error(code, "HeadBucket")
        with pytest.raises(InvalidCredential):
            S3Adapter().validate_credential(s3_credential)


def _response(status_code=200, payload=None):
    response = Mock()
    response.status_code = status_code
    response.content = b"{}" if payload is not None else b""
    response.json.return_value = payload
    response.text = ""
    return response


class TestApiVideoAdapter:
    @pytest.fixture
    def session(self):
        session = Mock()
        with patch.object(ApiVideoAdapter, "_session", return_value=session):
            yield session

    def test_pages_until_pages_total(self, settings, session):
        session.request.side_effect = [
            _response(payload={
                "data": [
                    {"videoId": "vi1", "title": "One", "assets": {"mp4": "https://cdn/vi1.mp4"}},
                    {"videoId": "vi2", "title": "Live only", "assets": {"hls": "https://cdn/vi2.m3u8"}},
                ],
                "pagination": {"currentPage": 1, "pagesTotal": 2},
            }),
            _response(payload={
                "data": [{"videoId": "vi3", "title": "Three", "assets": {"mp4": "https://cdn/vi3.mp4"}}],
                "pagination": {"currentPage": 2, "pagesTotal": 2},
            }),
        ]
        credential = Credential(public_key="", secret_key="key")
        adapter = ApiVideoAdapter()

        first = adapter.fetch_page(credential, None)
        second = adapter.fetch_page(credential, first.next_cursor)

        assert [v.source_id for v in first.videos] == ["vi1"]
        assert not first.exhausted
        assert [v.source_id for v in second.videos] == ["vi3"]
        assert second.exhausted
        assert session.request.call_args.kwargs["params"]["currentPage"] == 2

    def test_fetch_video_returns_mp4_asset(self, settings, session):
        session.request.return_value = _response(payload={"videoId": "vi1", "assets": {"mp4": "https://cdn/vi1.mp4"}})
        video = ApiVideoAdapter().fetch_video(Credential(public_key="key"), Video(source_id="vi1"))
        assert video.access_url == "https://cdn/vi1.mp4"

    def test_fetch_video_deleted(self, settings, session):
        session.request.return_value = _response(status_code=404)
        with pytest.raises(NotFound):
            ApiVideoAdapter().fetch_video(Credential(public_key="key"), Video(source_id="vi1"))

    def test_validate_rejected(self, settings, session):
        session.request.return_value = _response(status_code=401)
        with pytest.raises(InvalidCredential):
            ApiVideoAdapter().validate_credential(Credential(public_key="key"))


class TestCloudflareStreamAdapter:
    @pytest.fixture
    def session(self):
        session = Mock()
        with patch.object(CloudflareStreamAdapter, "_session", return_value=session):
            yield session

    @pytest.fixture
    def credential(self):
        return Credential(public_key="acct", secret_key="token")

    def test_resumes_from_last_created_without_repeating_boundary(self, settings, session, credential):
        session.request.side_effect = [
            _response(payload={"result": [
                {"uid": "c1", "created": "2024-01-01T00:00:00Z", "readyToStream": True},
                {"uid": "c2", "created": "2024-01-02T00:00:00Z", "readyToStream": True},
            ]}),
            _response(payload={"result": [
                {"uid": "c2", "created": "2024-01-02T00:00:00Z", "readyToStream": True},
                {"uid": "c3", "created": "2024-01-03T00:00:00Z", "readyToStream": False},
            ]}),
        ]
        adapter = CloudflareStreamAdapter()
        adapter.PAGE_SIZE = 2

        first = adapter.fetch_page(credential, None)
        second = adapter.fetch_page(credential, first.next_cursor)

        assert [v.source_id for v in first.videos] == ["c1", "c2"]
        assert first.next_cursor.to_json() == {"start": "2024-01-02T00:00:00Z", "seen": ["c2"]}
        assert second.videos == []
        assert session.request.call_args.kwargs["params"]["start"] == "2024-01-02T00:00:00Z"

    def test_short_page_is_exhausted(self, settings, session, credential):
        session.request.return_value = _response(payload={"result": [
            {"uid": "c1", "created": "2024-01-01T00:00:00Z", "readyToStream": True},
        ]})
        page = CloudflareStreamAdapter().fetch_page(credential, None)
        assert page.exhausted
        assert page.next_cursor is None

    def test_full_page_of_boundary_ids_is_a_pagination_error(self, settings, session, credential):
        session.request.return_value = _response(payload={"result": [
            {"uid": "c1", "created": "2024-01-02T00:00:00Z", "readyToStream": True},
            {"uid": "c2", "created": "2024-01-02T00:00:00Z", "readyToStream": True},
        ]})
        adapter = CloudflareStreamAdapter()
        adapter.PAGE_SIZE = 2
        cursor = adapter.make_cursor(start="2024-01-02T00:00:00Z", seen=["c1", "c2"])

        with pytest.raises(PaginationError, match="stuck"):
            adapter.fetch_page(credential, cursor)

    def test_resolve_requests_download_when_missing(self, settings, session, credential):
        session.request.side_effect = [
            _response(payload={"result": {}}),
            _response(payload={"result": {"default": {"status": "inprogress", "url": "https://dl/c1.mp4"}}}),
        ]

        video = CloudflareStreamAdapter().fetch_video(credential, Video(source_id="c1"))

        assert video.access_url == "https://dl/c1.mp4"
        assert [c.args[0] for c in session.request.call_args_list] == ["GET", "POST"]

    def test_validate_checks_token(self, settings, session, credential):
        session.request.return_value = _response(payload={"success": False})
        with pytest.raises(InvalidCredential):
            CloudflareStreamAdapter().validate_credential(credential)


class TestMuxSourceAdapter:
    @pytest.fixture
    def session(self):
        session = Mock()
        with patch.object(MuxSourceAdapter, "_session", return_value=session):
            yield session

    @pytest.fixture
    def credential(self):
        return Credential(public_key="token-id", secret_key="token-secret")

    def test_lists_ready_public_assets(self, settings, session, credential):
        session.request.return_value = _response(payload={
            "data": [
                {"id": "m1", "status": "ready", "playback_ids": [{"id": "p1", "policy": "public"}]},
                {"id": "m2", "status": "preparing", "playback_ids": [{"id": "p2", "policy": "public"}]},
                {"id": "m3", "status": "ready", "playback_ids": [{"id": "p3", "policy": "signed"}]},
            ],
            "next_cursor": "abc",
        })

        page = MuxSourceAdapter().fetch_page(credential, None)

        assert [v.source_id for v in page.videos] == ["m1"]
        assert page.next_cursor.to_json() == {"cursor": "abc"}

    def test_resolve_picks_best_available_rendition(self, settings, session, credential):
        session.request.return_value = _response(payload={
            "data": [{"id": "m1", "status": "ready", "playback_ids": [{"id": "p1", "policy": "public"}]}],
        })
        adapter = MuxSourceAdapter()
        adapter.fetch_page(credential, None)

        with patch("truckload.providers.mux.requests.head") as head:
            head.side_effect = [Mock(status_code=404), Mock(status_code=200)]
            video = adapter.fetch_video(credential, Video(source_id="m1"))

        assert video.access_url == f"{settings.stream_base_url}/p1/high.mp4"
        assert session.request.call_count == 1

    def test_no_rendition_is_not_found(self, settings, session, credential):
        session.request.return_value = _response(payload={
            "data": {"id": "m1", "playback_ids": [{"id": "p1", "policy": "public"}]},
        })
        with patch("truckload.providers.mux.requests.head", return_value=Mock(status_code=404)):
            with pytest.raises(NotFound):
                MuxSourceAdapter().fetch_video(credential, Video(source_id="m1"))

    def test_validate_requires_both_halves(self, settings):
        with pytest.raises(InvalidCredential):
            MuxSourceAdapter().validate_credential(Credential(public_key="token-id"))
