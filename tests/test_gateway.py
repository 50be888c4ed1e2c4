from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError, NoCredentialsError

from mailstack.aws.gateway import CloudGateway
from mailstack.dns_records import SPF_VALUE, required_records
from mailstack.errors import AuthorizationError, CredentialError, NotFoundError
from mailstack.metadata.models import IdentityType


def _client_error(code: str, operation: str = "Operation") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


class _Factory:
    def __init__(self) -> None:
        self.clients: dict[str, MagicMock] = {}
        self.regions: dict[str, str | None] = {}

    def __call__(self, service, region, profile, settings):
        self.regions[service] = region
        return self.clients.setdefault(service, MagicMock())

    def __getitem__(self, service: str) -> MagicMock:
        return self.clients.setdefault(service, MagicMock())


@pytest.fixture
def factory() -> _Factory:
    return _Factory()


@pytest.fixture
def gateway(factory: _Factory) -> CloudGateway:
    return CloudGateway("eu-west-1", client_factory=factory)


@pytest.mark.asyncio
async def test_caller_identity(gateway: CloudGateway, factory: _Factory) -> None:
    factory["sts"].get_caller_identity.return_value = {
        "Account": "123456789012",
        "Arn": "arn:aws:iam::123456789012:user/dev",
        "UserId": "AIDA",
    }

    identity = await gateway.caller_identity()

    assert identity.account_id == "123456789012"


@pytest.mark.asyncio
async def test_missing_credentials_are_reported(gateway: CloudGateway, factory: _Factory) -> None:
    factory["sts"].get_caller_identity.side_effect = NoCredentialsError()

    with pytest.raises(CredentialError) as exc_info:
        await gateway.caller_identity()

    assert exc_info.value.code == "no_credentials"


@pytest.mark.asyncio
async def test_list_identities_follows_pages(gateway: CloudGateway, factory: _Factory) -> None:
    factory["sesv2"].list_email_identities.side_effect = [
        {
            "EmailIdentities": [{"IdentityName": "example.com", "IdentityType": "DOMAIN"}],
            "NextToken": "n1",
        },
        {"EmailIdentities": [{"IdentityName": "ops@example.com", "IdentityType": "EMAIL_ADDRESS"}]},
    ]

    identities = await gateway.list_email_identities()

    assert [(item.name, item.type) for item in identities] == [
        ("example.com", IdentityType.DOMAIN),
        ("ops@example.com", IdentityType.ADDRESS),
    ]
    assert factory["sesv2"].list_email_identities.call_args_list[1].kwargs["NextToken"] == "n1"


@pytest.mark.asyncio
async def test_get_email_identity(gateway: CloudGateway, factory: _Factory) -> None:
    factory["sesv2"].get_email_identity.return_value = {
        "IdentityType": "DOMAIN",
        "VerifiedForSendingStatus": True,
        "VerificationStatus": "SUCCESS",
        "DkimAttributes": {"Status": "SUCCESS", "SigningEnabled": True, "Tokens": ["a", "b", "c"]},
        "ConfigurationSetName": "legacy",
    }

    identity = await gateway.get_email_identity("example.com")

    assert identity.verified is True
    assert identity.dkim_tokens == ("a", "b", "c")
    assert identity.config_set == "legacy"


@pytest.mark.asyncio
async def test_unknown_identities_are_dropped(gateway: CloudGateway, factory: _Factory) -> None:
    def _get(EmailIdentity: str):
        if EmailIdentity == "gone.com":
            raise _client_error("NotFoundException")
        return {"IdentityType": "DOMAIN", "VerifiedForSendingStatus": False}

    factory["sesv2"].get_email_identity.side_effect = _get

    identities = await gateway.get_email_identities(["example.com", "gone.com"])

    assert [identity.name for identity in identities] == ["example.com"]


@pytest.mark.asyncio
async def test_detaching_config_set_omits_the_name(gateway: CloudGateway, factory: _Factory) -> None:
    await gateway.set_identity_config_set("example.com", None)

    factory["sesv2"].put_email_identity_configuration_set_attributes.assert_called_once_with(
        EmailIdentity="example.com"
    )


@pytest.mark.asyncio
async def test_access_denied_is_mapped(gateway: CloudGateway, factory: _Factory) -> None:
    factory["sesv2"].put_email_identity_configuration_set_attributes.side_effect = _client_error(
        "AccessDeniedException"
    )

    with pytest.raises(AuthorizationError):
        await gateway.set_identity_config_set("example.com", "set")


@pytest.mark.asyncio
async def test_find_hosted_zone_walks_up_to_the_parent(gateway: CloudGateway, factory: _Factory) -> None:
    def _zones(DNSName: str, MaxItems: str):
        if DNSName == "example.com":
            return {"HostedZones": [{"Id": "/hostedzone/Z123", "Name": "example.com.", "Config": {}}]}
        return {"HostedZones": [{"Id": "/hostedzone/Z9", "Name": "other.org.", "Config": {}}]}

    factory["route53"].list_hosted_zones_by_name.side_effect = _zones

    zone = await gateway.find_hosted_zone("mail.example.com")

    assert (zone.id, zone.name) == ("Z123", "example.com")
    assert factory.regions["route53"] == "us-east-1"


@pytest.mark.asyncio
async def test_private_zones_are_ignored(gateway: CloudGateway, factory: _Factory) -> None:
    factory["route53"].list_hosted_zones_by_name.return_value = {
        "HostedZones": [
            {"Id": "/hostedzone/Z1", "Name": "example.com.", "Config": {"PrivateZone": True}}
        ]
    }

    assert await gateway.find_hosted_zone("example.com") is None


@pytest.mark.asyncio
async def test_apply_dns_records_merges_existing_txt(gateway: CloudGateway, factory: _Factory) -> None:
    route53 = factory["route53"]
    route53.list_resource_record_sets.return_value = {
        "ResourceRecordSets": [
            {
                "Name": "example.com.",
                "Type": "TXT",
                "ResourceRecords": [{"Value": '"google-site-verification=abc"'}],
            }
        ]
    }
    route53.change_resource_record_sets.return_value = {"ChangeInfo": {"Id": "/change/C1"}}
    spf = [record for record in required_records("example.com", ("a",), "eu-west-1") if record.value == SPF_VALUE]

    change_id = await gateway.apply_dns_records("Z1", spf)

    assert change_id == "/change/C1"
    batch = route53.change_resource_record_sets.call_args.kwargs["ChangeBatch"]
    values = batch["Changes"][0]["ResourceRecordSet"]["ResourceRecords"]
    assert values == [{"Value": '"google-site-verification=abc"'}, {"Value": f'"{SPF_VALUE}"'}]


@pytest.mark.asyncio
async def test_find_distribution_by_alias(gateway: CloudGateway, factory: _Factory) -> None:
    paginator = MagicMock()
    paginator.paginate.return_value = [
        {"DistributionList": {"Items": [{"Id": "E1", "Aliases": {"Items": ["Track.Example.com"]}}]}}
    ]
    factory["cloudfront"].get_paginator.return_value = paginator

    assert await gateway.find_distribution_by_alias("track.example.com.") == "E1"


@pytest.mark.asyncio
async def test_find_archive_skips_pending_deletion(gateway: CloudGateway, factory: _Factory) -> None:
    mailmanager = factory["mailmanager"]
    mailmanager.list_archives.return_value = {
        "Archives": [
            {"ArchiveName": "set-archive", "ArchiveId": "a-old", "ArchiveState": "PENDING_DELETION"},
            {"ArchiveName": "set-archive", "ArchiveId": "a-1", "ArchiveState": "ACTIVE"},
        ]
    }
    mailmanager.get_archive.return_value = {
        "ArchiveId": "a-1",
        "ArchiveArn": "arn:archive/a-1",
        "ArchiveName": "set-archive",
        "ArchiveState": "ACTIVE",
    }

    archive = await gateway.find_archive("set-archive")

    assert archive.archive_id == "a-1"
    mailmanager.get_archive.assert_called_once_with(ArchiveId="a-1")


@pytest.mark.asyncio
async def test_create_archive_passes_key(gateway: CloudGateway, factory: _Factory) -> None:
    mailmanager = factory["mailmanager"]
    mailmanager.create_archive.return_value = {"ArchiveId": "a-2"}
    mailmanager.get_archive.return_value = {
        "ArchiveId": "a-2",
        "ArchiveArn": "arn:archive/a-2",
        "ArchiveName": "set-archive",
    }

    await gateway.create_archive("set-archive", "ONE_YEAR", kms_key_arn="arn:kms")

    kwargs = mailmanager.create_archive.call_args.kwargs
    assert kwargs["Retention"] == {"RetentionPeriod": "ONE_YEAR"}
    assert kwargs["KmsKeyArn"] == "arn:kms"


@pytest.mark.asyncio
async def test_delete_missing_archive_returns_false(gateway: CloudGateway, factory: _Factory) -> None:
    factory["mailmanager"].delete_archive.side_effect = _client_error("ResourceNotFoundException")

    assert await gateway.delete_archive("a-1") is False


@pytest.mark.asyncio
async def test_oidc_provider_exists(gateway: CloudGateway, factory: _Factory) -> None:
    iam = factory["iam"]

    assert await gateway.oidc_provider_exists("arn:oidc") is True
    iam.get_open_id_connect_provider.side_effect = _client_error("NoSuchEntity")
    assert await gateway.oidc_provider_exists("arn:oidc") is False


@pytest.mark.asyncio
async def test_not_found_from_link_is_not_found(gateway: CloudGateway, factory: _Factory) -> None:
    factory["sesv2"].put_configuration_set_archiving_options.side_effect = _client_error(
        "NotFoundException"
    )

    with pytest.raises(NotFoundError):
        await gateway.link_archive("set", None)
