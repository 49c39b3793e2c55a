from craflow.models.models import CRA_LOCKED, CRA_SUBMITTED, ROLE_CLIENT, ROLE_INDEPENDENT, Cra
from craflow.result import ErrorCode, Severity
from craflow.services.access import AccessControl


def _cra(db, cra_id):
    return db.query(Cra).filter(Cra.id == cra_id).one()


def test_mission_visibility_follows_company_roles(db, freelancer, client_user, outsider, mission):
    assert AccessControl(db, freelancer).accessible_mission_ids() == {mission.id}
    assert AccessControl(db, client_user).accessible_mission_ids() == {mission.id}
    assert AccessControl(db, outsider).accessible_mission_ids() == frozenset()


def test_admin_role_grants_no_visibility(db, make_user, client_company, mission):
    admin = make_user(client_company, "admin")
    assert AccessControl(db, admin).accessible_mission_ids() == frozenset()


def test_report_reachable_once_linked_to_a_mission(db, draft_cra, add_entry, client_user, outsider):
    assert AccessControl(db, client_user).accessible_report_ids() == frozenset()

    assert add_entry(draft_cra.id).ok

    assert AccessControl(db, client_user).accessible_report_ids() == {draft_cra.id}
    assert AccessControl(db, outsider).accessible_report_ids() == frozenset()


def test_accessible_entry_ids(db, draft_cra, add_entry, freelancer, client_user, outsider):
    created = add_entry(draft_cra.id)
    unlinked = add_entry(draft_cra.id, day=11, with_mission=False)

    assert AccessControl(db, freelancer).accessible_entry_ids() == {created.data.id, unlinked.data.id}
    assert AccessControl(db, client_user).accessible_entry_ids() == {created.data.id, unlinked.data.id}
    assert AccessControl(db, outsider).accessible_entry_ids() == frozenset()


def test_has_role(db, freelancer, client_user):
    assert AccessControl(db, freelancer).has_role(ROLE_INDEPENDENT)
    assert not AccessControl(db, client_user).has_role(ROLE_INDEPENDENT)
    assert AccessControl(db, client_user).has_role(ROLE_CLIENT)


def test_authorize_access(db, draft_cra, add_entry, freelancer, client_user, outsider):
    add_entry(draft_cra.id)
    cra = _cra(db, draft_cra.id)

    assert AccessControl(db, freelancer).authorize_access(cra).ok
    assert AccessControl(db, client_user).authorize_access(cra).ok

    denied = AccessControl(db, outsider).authorize_access(cra)
    assert denied.status == Severity.forbidden
    assert denied.error_code == ErrorCode.insufficient_permissions


def test_authorize_modification(db, draft_cra, add_entry, freelancer, client_user):
    add_entry(draft_cra.id)
    cra = _cra(db, draft_cra.id)

    assert AccessControl(db, freelancer).authorize_modification(cra).ok
    assert AccessControl(db, client_user).authorize_modification(cra).status == Severity.forbidden

    cra.status = CRA_SUBMITTED
    refused = AccessControl(db, freelancer).authorize_modification(cra)
    assert refused.status == Severity.conflict
    assert refused.error_code == ErrorCode.report_submitted

    cra.status = CRA_LOCKED
    assert AccessControl(db, freelancer).authorize_modification(cra).error_code == ErrorCode.report_locked
    db.rollback()
