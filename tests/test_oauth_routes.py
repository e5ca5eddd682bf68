from urllib.parse import parse_qs, urlparse


def query_of(location):
    return {k: v[0] for k, v in parse_qs(urlparse(location).query).items()}


def test_workspace_begin_redirects_to_google(client):
    resp = client.get("/auth/workspace", follow_redirects=False)
    assert resp.status_code == 307
    params = query_of(resp.headers["location"])
    assert params["access_type"] == "offline"
    assert params["prompt"] == "consent"
    assert len(params["state"]) == 32


def test_workspace_callback_creates_identified_customer(client, store, workspace_login):
    customer_id = workspace_login()

    customer = store.get_by_id(customer_id)
    assert customer.email == "jane@example.com"
    assert customer.picture == "https://example.com/jane.png"
    assert customer.has_workspace_auth
    # The session is now identified, so disconnect works without any id
    assert client.post("/auth/workspace/disconnect").status_code == 200


def test_two_consents_make_two_customers(client, store, workspace_login):
    first = workspace_login("code-1")
    second = workspace_login("code-2")
    assert first != second
    assert store.count() == 2


def test_workspace_callback_with_provider_error(client, store):
    resp = client.get("/auth/workspace/callback", params={"error": "access_denied"}, follow_redirects=False)
    assert resp.headers["location"] == "/auth-result?workspace_error=auth_failed"
    assert store.count() == 0


def test_workspace_callback_with_forged_state(client, store):
    client.get("/auth/workspace", follow_redirects=False)
    resp = client.get(
        "/auth/workspace/callback", params={"code": "c", "state": "forged"}, follow_redirects=False
    )
    assert query_of(resp.headers["location"]) == {"workspace_error": "auth_failed"}
    assert store.count() == 0


def test_accounting_begin_without_login(client):
    resp = client.get("/auth/accounting", follow_redirects=False)
    assert resp.status_code == 307
    assert resp.headers["location"] == "/auth-result?qb_error=login_required"


def test_accounting_begin_for_unknown_customer(client):
    resp = client.get("/auth/accounting", params={"customer_id": "ghost"}, follow_redirects=False)
    assert resp.status_code == 404
    assert resp.json()["error"] == "customer_not_found"


def test_accounting_attaches_to_logged_in_customer(client, store, workspace_login, connect_accounting):
    customer_id = workspace_login()
    result = connect_accounting(realm_id="123145")

    assert result == {"qb_success": "1", "customer_id": customer_id}
    assert store.count() == 1
    customer = store.get_by_id(customer_id)
    assert customer.qb_company_id == "123145"
    assert customer.google_access_token is not None


def test_accounting_for_explicit_customer_id(make_client, store, workspace_login):
    customer_id = workspace_login()
    # A fresh browser with no session names the customer explicitly
    other = make_client()
    begin = other.get("/auth/accounting", params={"customer_id": customer_id}, follow_redirects=False)
    state = query_of(begin.headers["location"])["state"]
    resp = other.get(
        "/auth/accounting/callback",
        params={"code": "qb", "state": state, "realmId": "555"},
        follow_redirects=False,
    )
    assert query_of(resp.headers["location"])["customer_id"] == customer_id
    assert store.get_by_id(customer_id).qb_company_id == "555"


def test_standalone_creates_accounting_only_customer(client, store, connect_accounting):
    result = connect_accounting("/auth/accounting/standalone", realm_id="4620816365")

    assert result["qb_success"] == "1"
    customer = store.get_by_id(result["customer_id"])
    assert customer.email == "qb-user-4620816365@temp.local"
    assert customer.has_accounting_auth
    assert not customer.has_workspace_auth
    assert store.count() == 1


def test_replayed_standalone_callback(client, store, connect_accounting):
    connect_accounting("/auth/accounting/standalone")
    resp = client.get(
        "/auth/accounting/callback",
        params={"code": "qb-code", "realmId": "9130350000000001"},
        follow_redirects=False,
    )
    assert query_of(resp.headers["location"]) == {"qb_error": "session_lost"}
    assert store.count() == 1


def test_callback_with_no_session_context(client, store, quickbooks):
    resp = client.get(
        "/auth/accounting/callback", params={"code": "qb", "realmId": "1"}, follow_redirects=False
    )
    assert resp.headers["location"] == "/auth-result?qb_error=session_lost"
    assert quickbooks.exchanges == []
    assert store.count() == 0


def test_forged_callback_link_for_logged_in_customer(client, store, quickbooks, workspace_login):
    customer_id = workspace_login()

    resp = client.get(
        "/auth/accounting/callback",
        params={"code": "attacker-code", "realmId": "attacker-realm"},
        follow_redirects=False,
    )

    assert query_of(resp.headers["location"]) == {"qb_error": "auth_failed"}
    assert quickbooks.exchanges == []
    assert store.get_by_id(customer_id).qb_company_id is None


def test_forged_workspace_callback_link(client, store, google, workspace_login):
    customer_id = workspace_login()

    resp = client.get("/auth/workspace/callback", params={"code": "attacker-code"}, follow_redirects=False)

    assert query_of(resp.headers["location"]) == {"workspace_error": "auth_failed"}
    assert google.exchanges == ["google-code"]
    assert store.count() == 1
    # Still identified as the original customer
    assert client.post("/auth/workspace/disconnect").status_code == 200
    assert not store.get_by_id(customer_id).has_workspace_auth


def test_callback_exchange_failure(client, store, quickbooks, workspace_login, connect_accounting):
    customer_id = workspace_login()
    quickbooks.fail_exchange = True

    assert connect_accounting() == {"qb_error": "token_save_failed"}
    assert not store.get_by_id(customer_id).has_accounting_auth


def test_callback_with_provider_error(client, store, workspace_login):
    workspace_login()
    client.get("/auth/accounting", follow_redirects=False)
    resp = client.get("/auth/accounting/callback", params={"error": "access_denied"}, follow_redirects=False)
    assert resp.headers["location"] == "/auth-result?qb_error=auth_failed"


def test_disconnects_require_a_session(client):
    resp = client.post("/auth/workspace/disconnect")
    assert resp.status_code == 401
    assert resp.json()["error"] == "not_authenticated"
    assert client.post("/auth/accounting/disconnect").status_code == 401


def test_disconnect_accounting_then_workspace(client, store, workspace_login, connect_accounting):
    customer_id = workspace_login()
    connect_accounting()

    resp = client.post("/auth/accounting/disconnect")
    assert resp.json() == {"success": True, "message": "QuickBooks disconnected"}
    customer = store.get_by_id(customer_id)
    assert customer.accounting_credentials is None
    assert customer.qb_company_id is None
    assert customer.has_workspace_auth

    assert client.post("/auth/workspace/disconnect").json()["message"] == "Google disconnected"
    # Idempotent
    assert client.post("/auth/workspace/disconnect").status_code == 200
    assert store.get_by_id(customer_id).workspace_credentials is None


def test_company_keyed_disconnect(make_client, store, connect_accounting):
    first = connect_accounting("/auth/accounting/standalone", realm_id="111")["customer_id"]
    second = connect_accounting("/auth/accounting/standalone", realm_id="222")["customer_id"]

    anonymous = make_client()
    resp = anonymous.get("/auth/accounting/disconnect", params={"realmId": "111"}, follow_redirects=False)
    assert resp.headers["location"] == "/auth-result?qb_disconnected=1"
    assert not store.get_by_id(first).has_accounting_auth
    assert store.get_by_id(second).qb_company_id == "222"

    resp = anonymous.post("/auth/accounting/disconnect", params={"companyId": "222"}, follow_redirects=False)
    assert resp.status_code == 303
    assert not store.get_by_id(second).has_accounting_auth


def test_company_keyed_disconnect_without_id(client):
    resp = client.get("/auth/accounting/disconnect", follow_redirects=False)
    assert resp.headers["location"] == "/auth-result?qb_error=disconnect_failed"


def test_auth_result_messages(client):
    ok = client.get("/auth-result", params={"qb_success": "1", "customer_id": "abc"}).json()
    assert ok["status"] == "success"
    assert ok["customerId"] == "abc"

    lost = client.get("/auth-result", params={"qb_error": "session_lost"}).json()
    assert lost["status"] == "error"
    assert lost["message"] == "Session expired. Please try connecting QuickBooks again."
    assert lost["restartUrl"] == "/auth/accounting/standalone"

    login = client.get("/auth-result", params={"qb_error": "login_required"}).json()
    assert login["restartUrl"] == "/auth/workspace"


def test_logout_forgets_identity(client, workspace_login):
    workspace_login()
    assert client.get("/logout").json() == {"success": True}
    assert client.post("/auth/workspace/disconnect").status_code == 401
