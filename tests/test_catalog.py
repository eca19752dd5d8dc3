from __future__ import annotations

import pytest
import yaml

from aws_action_governor.catalog.descriptor import (
    ActionDescriptor,
    ActionDescriptorParser,
    hash_definition,
    verify_hash,
)
from aws_action_governor.catalog.loader import load_catalog
from aws_action_governor.catalog.models import ActionCatalog


@pytest.fixture
def catalog() -> ActionCatalog:
    return load_catalog()


@pytest.fixture
def parser(catalog: ActionCatalog) -> ActionDescriptorParser:
    return ActionDescriptorParser(catalog)


def test_default_catalog_lists_governed_actions(catalog: ActionCatalog) -> None:
    assert set(catalog.actions) == {
        "ec2.stop",
        "ec2.start",
        "ec2.resize",
        "s3.lifecycle",
        "s3.intelligent_tiering",
        "rds.stop",
        "rds.start",
        "rds.snapshot",
        "rds.resize",
        "lambda.update_memory",
        "lambda.update_timeout",
    }
    assert catalog.inverse_of("ec2.stop") == "ec2.start"
    assert catalog.inverse_of("rds.start") == "rds.stop"
    assert catalog.inverse_of("ec2.resize") is None
    assert catalog.is_allowed("ec2.stop")
    assert not catalog.is_allowed("ec2.terminate")


def test_check_descriptions_fall_back_to_type(catalog: ActionCatalog) -> None:
    assert catalog.pre_check_description("verify_backups") == "Verify backups exist"
    assert catalog.pre_check_description("custom") == "Pre-check: custom"
    assert catalog.post_check_description("custom") == "Post-check: custom"


def test_catalog_rejects_unknown_inverse() -> None:
    with pytest.raises(ValueError, match="unknown inverse"):
        ActionCatalog.model_validate(
            {
                "actions": {
                    "ec2.stop": {
                        "name": "Stop",
                        "api": {"service": "EC2", "operation": "StopInstances"},
                        "inverse": "ec2.start",
                    }
                }
            }
        )


def test_catalog_requires_namespaced_action_names() -> None:
    with pytest.raises(ValueError, match="dot-namespaced"):
        ActionCatalog.model_validate(
            {"actions": {"stop": {"name": "Stop", "api": {"service": "EC2", "operation": "X"}}}}
        )


def test_load_catalog_from_custom_path(tmp_path) -> None:
    path = tmp_path / "catalog.yaml"
    path.write_text(
        yaml.safe_dump(
            {
                "actions": {
                    "ec2.stop": {
                        "name": "Stop",
                        "api": {"service": "EC2", "operation": "StopInstances"},
                    }
                }
            }
        )
    )

    catalog = load_catalog(str(path))

    assert list(catalog.actions) == ["ec2.stop"]
    assert catalog.actions["ec2.stop"].pre_checks == ["verify_permissions"]


def test_load_catalog_missing_file(tmp_path) -> None:
    with pytest.raises(FileNotFoundError):
        load_catalog(str(tmp_path / "missing.yaml"))


def test_parse_known_action_fills_catalog_defaults(parser: ActionDescriptorParser) -> None:
    validated = parser.parse(ActionDescriptor(action="s3.lifecycle", regions=["us-east-1"]))

    definition = validated.definition
    assert validated.validation.valid
    assert validated.dsl_version == "1.0"
    assert definition.service == "s3"
    assert definition.api_service == "S3"
    assert definition.operation == "PutBucketLifecycleConfiguration"
    assert definition.parameters == {"transition_days": 30, "storage_class": "STANDARD_IA"}
    assert definition.max_resources == 50
    assert definition.require_approval is True
    assert definition.pre_checks == ["verify_permissions", "check_tags"]


def test_parse_descriptor_overrides(parser: ActionDescriptorParser) -> None:
    validated = parser.parse(
        ActionDescriptor(
            action="s3.lifecycle",
            regions=["eu-west-1"],
            parameters={"transition_days": 60},
            max_resources=5,
            require_approval=False,
            pre_checks=[],
            post_checks=["notify"],
        )
    )

    definition = validated.definition
    assert definition.parameters["transition_days"] == 60
    assert definition.parameters["storage_class"] == "STANDARD_IA"
    assert definition.max_resources == 5
    assert definition.require_approval is False
    assert definition.pre_checks == []
    assert definition.post_checks == ["notify"]


def test_parse_uses_default_regions(parser: ActionDescriptorParser) -> None:
    validated = parser.parse(ActionDescriptor(action="ec2.stop"), default_regions=["us-west-2"])

    assert validated.validation.valid
    assert validated.definition.regions == ["us-west-2"]


def test_parse_unknown_action_is_invalid(parser: ActionDescriptorParser) -> None:
    validated = parser.parse(ActionDescriptor(action="ec2.terminate", regions=["us-east-1"]))

    assert not validated.validation.valid
    assert [e.code for e in validated.validation.errors] == ["unknown_action"]
    assert validated.definition.operation is None


def test_parse_collects_every_error(parser: ActionDescriptorParser) -> None:
    validated = parser.parse(
        ActionDescriptor(action="ec2.stop", version="9.9", max_resources=0)
    )

    codes = {e.code for e in validated.validation.errors}
    assert codes == {"unknown_version", "no_regions", "invalid_limit"}


def test_irreversible_action_warns(parser: ActionDescriptorParser) -> None:
    validated = parser.parse(ActionDescriptor(action="rds.snapshot", regions=["us-east-1"]))

    assert validated.validation.valid
    assert [w.code for w in validated.validation.warnings] == ["irreversible"]


def test_blocked_descriptor_is_carried_through(parser: ActionDescriptorParser) -> None:
    validated = parser.parse(
        ActionDescriptor(
            action="ec2.stop", regions=["us-east-1"], blocked=True, block_reason="change freeze"
        )
    )

    assert validated.blocked
    assert validated.block_reason == "change freeze"


def test_hash_is_stable_and_detects_tampering(parser: ActionDescriptorParser) -> None:
    first = parser.parse(ActionDescriptor(action="ec2.stop", regions=["us-east-1"]))
    second = parser.parse(ActionDescriptor(action="ec2.stop", regions=["us-east-1"]))

    assert first.hash == second.hash
    assert len(first.hash) == 64
    assert verify_hash(first.definition, first.hash)

    tampered = first.definition.model_copy(update={"regions": ["ap-south-1"]})
    assert hash_definition(tampered) != first.hash
    assert not verify_hash(tampered, first.hash)
