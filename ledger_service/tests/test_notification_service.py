"""
Tests for settlement notification messages and the RabbitMQ hand-off.
"""
import json
import pytest
from decimal import Decimal
from unittest.mock import MagicMock, Mock, patch

from ledger_service.rabbitmq.config import rabbitmq_config
from ledger_service.rabbitmq.producer import RabbitMQProducer
from ledger_service.schemas.expense_schema import Expense
from ledger_service.schemas.settlement_schema import SettlementKind
from ledger_service.services.notification_service import (
    build_settlement_notification,
    describe_balance,
    notify_group_settlement
)
from ledger_service.services.settlement_service import create_settlement


@pytest.fixture
def scenario_group(group):
    group.add_expense(Expense(payer="A", amount=Decimal("90"), participants=["A", "B", "C"]))
    group.add_expense(Expense(payer="B", amount=Decimal("30"), participants=["B", "C"]))
    return group


@pytest.mark.unit
class TestDescribeBalance:

    def test_creditor(self):
        assert describe_balance(Decimal("60")) == "is owed 60.00"

    def test_debtor(self):
        assert describe_balance(Decimal("-45")) == "owes 45.00"

    def test_settled(self):
        assert describe_balance(Decimal("0")) == "settled up"
        assert describe_balance(Decimal("0.004")) == "settled up"


@pytest.mark.unit
class TestBuildSettlementNotification:

    def test_one_line_per_member(self, scenario_group):
        notification = build_settlement_notification(scenario_group)
        lines = {line.member_id: line for line in notification.members}

        assert notification.group_id == scenario_group.id
        assert notification.group_name == "Trip"
        assert notification.settlement_id is None
        assert [line.member_id for line in notification.members] == ["A", "B", "C"]
        assert lines["A"].summary == "is owed 60.00"
        assert lines["B"].summary == "owes 15.00"
        assert lines["C"].summary == "owes 45.00"
        assert lines["A"].email == "alice@example.com"

    def test_transfers_attached_to_members(self, scenario_group):
        notification = build_settlement_notification(scenario_group)
        lines = {line.member_id: line for line in notification.members}

        assert [(t.from_member_id, t.amount) for t in lines["A"].receives] == [
            ("C", Decimal("45.00")),
            ("B", Decimal("15.00")),
        ]
        assert lines["A"].pays == []
        assert [(t.to_member_id, t.amount) for t in lines["C"].pays] == [("A", Decimal("45.00"))]

    def test_settlement_id_included(self, scenario_group):
        settlement = create_settlement(scenario_group, SettlementKind.group, created_by="A")
        notification = build_settlement_notification(scenario_group, settlement)
        assert notification.settlement_id == settlement.id


@pytest.mark.unit
class TestNotifyGroupSettlement:

    def test_message_handed_to_producer(self, scenario_group):
        producer = Mock()
        producer.publish_settlement_notification.return_value = True

        assert notify_group_settlement(scenario_group, producer=producer) is True

        message = producer.publish_settlement_notification.call_args[0][0]
        assert message["group_id"] == scenario_group.id
        assert len(message["members"]) == 3
        json.dumps(message)

    def test_publish_failure_reported(self, scenario_group):
        producer = Mock()
        producer.publish_settlement_notification.return_value = False
        assert notify_group_settlement(scenario_group, producer=producer) is False


@pytest.mark.unit
class TestRabbitMQProducer:

    @patch("ledger_service.rabbitmq.producer.pika.BlockingConnection")
    def test_publish_settlement_notification(self, mock_connection):
        channel = MagicMock()
        mock_connection.return_value.channel.return_value = channel
        mock_connection.return_value.is_closed = False

        producer = RabbitMQProducer()
        assert producer.publish_settlement_notification({"group_id": "g1", "members": []}) is True

        channel.exchange_declare.assert_called_once()
        channel.queue_declare.assert_not_called()
        kwargs = channel.basic_publish.call_args.kwargs
        assert kwargs["exchange"] == rabbitmq_config.notification_exchange
        assert kwargs["routing_key"] == rabbitmq_config.settlement_notification_key
        body = json.loads(kwargs["body"])
        assert body["group_id"] == "g1"
        assert "timestamp" in body

    @patch("ledger_service.rabbitmq.producer.pika.BlockingConnection")
    def test_connection_failure_returns_false(self, mock_connection):
        mock_connection.side_effect = ConnectionError("broker down")

        producer = RabbitMQProducer()
        assert producer.publish_settlement_notification({"group_id": "g1"}) is False
