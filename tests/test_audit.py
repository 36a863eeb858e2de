"""
Tests for the audit trail and its admin queries
"""
from datetime import datetime

import pytest

from actions import departments, user_logs
from models import db, UserLog, DocumentLog, Department
from utils.audit import log_action, log_document
from utils.helpers import transaction
from utils.errors import ActionError, ForbiddenError, NotFoundError
from tests.conftest import make_user


class TestAuditTrail:
    """Rows are written alongside the change they describe"""

    def test_log_action_is_not_committed_on_its_own(self, admin):
        log_action('create', 'department', 1, 'queued')
        db.session.rollback()
        assert UserLog.query.count() == 0

    def test_failed_mutation_leaves_no_entry(self, admin):
        departments.create({'name': 'Music'})
        with pytest.raises(ActionError):
            departments.create({'name': 'music'})
        assert UserLog.query.count() == 1

    def test_unexpected_error_rolls_back(self, admin):
        with pytest.raises(TypeError):
            with transaction("Failed to create department"):
                db.session.add(Department(name='Drama'))
                log_action('create', 'department', None, 'half done')
                raise TypeError("bad value")

        assert not db.session.new
        departments.create({'name': 'Art'})
        assert UserLog.query.count() == 1
        assert Department.query.count() == 1

    def test_log_document_records_request_details(self, admin):
        log_document('receipt', 42)
        entry = DocumentLog.query.one()
        assert entry.user_id == admin.id
        assert entry.target_id == '42'
        assert entry.document_type == 'receipt'


class TestUserLogQueries:
    """Admin-only log browsing"""

    @pytest.fixture
    def entries(self, admin):
        departments.create({'name': 'Art'})
        created = departments.create({'name': 'Drama'})
        departments.update(created['id'], {'name': 'Theatre'})
        old = UserLog(user_id=admin.id, action='delete', target_table='program', target_id='7',
                      timestamp=datetime(2024, 1, 15, 23, 30))
        db.session.add(old)
        db.session.commit()
        return old

    def test_filters(self, admin, entries):
        assert len(user_logs.get_all()) == 4
        assert len(user_logs.get_all(action='CREATE')) == 2
        assert len(user_logs.get_all(target_table='program')) == 1
        assert len(user_logs.get_all(user_id=admin.id, limit=2)) == 2

    def test_end_date_is_inclusive(self, admin, entries):
        result = user_logs.get_all(date_from='2024-01-15', date_to='2024-01-15')
        assert [e['id'] for e in result] == [entries.id]

    def test_newest_first(self, admin, entries):
        result = user_logs.get_all()
        assert result[-1]['id'] == entries.id
        assert result[0]['action'] == 'update'

    def test_invalid_action(self, admin, entries):
        with pytest.raises(ActionError, match="Invalid log action"):
            user_logs.get_all(action='explode')

    def test_summary(self, admin, entries):
        summary = user_logs.get_summary()
        assert summary['total'] == 4
        assert summary['by_action'] == {'create': 2, 'update': 1, 'delete': 1}
        assert summary['today'] == 3

    def test_by_user_and_id(self, admin, entries):
        assert len(user_logs.get_by_user(admin.id)) == 4
        assert user_logs.get_by_id(entries.id)['user']['email'] == admin.email
        with pytest.raises(NotFoundError, match="Log entry not found"):
            user_logs.get_by_id(9999)
        with pytest.raises(NotFoundError, match="User not found"):
            user_logs.get_by_user(9999)

    def test_registrar_cannot_browse(self, ctx, login_as):
        login_as(make_user('Registrar'))
        with pytest.raises(ForbiddenError):
            user_logs.get_all()
