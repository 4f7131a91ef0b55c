import base64
import json
import time

from multigestor import users
from multigestor.authenticator import GENERIC_FAILURE, LOCKED_FAILURE
from multigestor.config import settings

PASSWORD = "Secreto123"


async def _signup(client, email, password=PASSWORD, name="Ana"):
    return await client.post(
        "/usuarios/registro",
        data={"name": name, "email": email, "password": password, "confirm_password": password},
    )


async def _login(client, email, password=PASSWORD):
    return await client.post("/usuarios/ingreso", data={"email": email, "password": password})


async def _flash_after(client, resp):
    follow = await client.get(resp.headers["location"])
    return [m["text"] for m in follow.json().get("flash", [])]


async def _logged_in(client_factory, email, name="Ana"):
    c = await client_factory()
    assert (await _signup(c, email, name=name)).status_code == 303
    resp = await _login(c, email)
    assert resp.status_code == 303 and resp.headers["location"] == "/notas"
    return c


async def _note_ids(client, search=None):
    params = {"search": search} if search else {}
    resp = await client.get("/notas", params=params)
    assert resp.status_code == 200
    return [n["id"] for n in resp.json()["notes"]["items"]]


async def test_signup_then_login_lands_on_notes(client):
    resp = await _signup(client, "ana@example.com")
    assert resp.status_code == 303
    assert resp.headers["location"] == "/usuarios/ingreso"
    assert "Usuario registrado correctamente" in (await _flash_after(client, resp))[0]

    resp = await _login(client, "ana@example.com")
    assert resp.status_code == 303
    assert resp.headers["location"] == "/notas"
    assert client.cookies.get("sid")

    me = await client.get("/api/me")
    assert me.status_code == 200
    assert me.json()["email"] == "ana@example.com"
    assert "password_hash" not in me.json()


async def test_short_password_signup_is_rejected(client, db):
    resp = await _signup(client, "a@b.com", password="abc")
    assert resp.status_code == 400
    body = resp.json()
    assert body["view"] == "users/signup"
    assert ("password", "min_length") in {(e["field"], e["rule"]) for e in body["errors"]}
    assert await users.find_by_email(db, "a@b.com") is None


async def test_duplicate_signup_is_rejected(client):
    assert (await _signup(client, "a@b.com")).status_code == 303
    resp = await _signup(client, "a@b.com", name="Otra")
    assert resp.status_code == 400
    assert [e["rule"] for e in resp.json()["errors"]] == ["already_registered"]


async def test_login_failures_do_not_reveal_which_part_was_wrong(client):
    await _signup(client, "ana@example.com")

    unknown = await _login(client, "nadie@example.com")
    assert unknown.status_code == 303
    assert await _flash_after(client, unknown) == [GENERIC_FAILURE]

    wrong = await _login(client, "ana@example.com", "Incorrecta1")
    assert wrong.status_code == 303
    assert await _flash_after(client, wrong) == [GENERIC_FAILURE]
    assert "sid" not in client.cookies


async def test_login_requires_both_fields(client):
    resp = await client.post("/usuarios/ingreso", data={"email": "ana@example.com"})
    assert resp.status_code == 303
    assert await _flash_after(client, resp) == ["Todos los campos son obligatorios"]


async def test_lockout_over_http(client):
    await _signup(client, "ana@example.com")
    for _ in range(5):
        await _login(client, "ana@example.com", "Incorrecta1")

    resp = await _login(client, "ana@example.com")
    assert resp.headers["location"] == "/usuarios/ingreso"
    assert await _flash_after(client, resp) == [LOCKED_FAILURE]


async def test_notes_require_a_session(client):
    for method, url in [
        ("GET", "/notas"),
        ("GET", "/notas/agregar"),
        ("POST", "/notas/nota-nueva"),
        ("GET", "/notas/editar/1"),
        ("PUT", "/notas/editar/1"),
        ("DELETE", "/notas/borrar/1"),
        ("GET", "/usuarios/salir"),
        ("GET", "/faq"),
    ]:
        resp = await client.request(method, url)
        assert resp.status_code == 303, url
        assert resp.headers["location"] == "/usuarios/ingreso"


async def test_note_crud_flow(client_factory):
    ana = await _logged_in(client_factory, "ana@example.com")

    assert (await ana.get("/notas/agregar")).json()["view"] == "notes/new-note"

    resp = await ana.post("/notas/nota-nueva", data={"title": " Compras ", "description": "<b>leche</b>"})
    assert resp.status_code == 303
    assert await _flash_after(ana, resp) == ["Nota creada correctamente"]

    listing = (await ana.get("/notas")).json()
    assert listing["view"] == "notes/all-notes"
    assert listing["notes"]["total"] == 1
    assert listing["notes"]["total_pages"] == 1
    note = listing["notes"]["items"][0]
    assert (note["title"], note["description"]) == ("Compras", "leche")

    edit = await ana.get(f"/notas/editar/{note['id']}")
    assert edit.json()["note"]["title"] == "Compras"

    resp = await ana.put(f"/notas/editar/{note['id']}", data={"title": "Mercado", "description": "pan"})
    assert resp.status_code == 303
    assert (await ana.get(f"/notas/editar/{note['id']}")).json()["note"]["title"] == "Mercado"
    assert await _note_ids(ana, search="MERC") == [note["id"]]
    assert await _note_ids(ana, search="nada") == []

    resp = await ana.delete(f"/notas/borrar/{note['id']}")
    assert resp.status_code == 303
    assert await _flash_after(ana, resp) == ["Nota eliminada correctamente"]
    assert await _note_ids(ana) == []

    # deleting again is harmless
    resp = await ana.delete(f"/notas/borrar/{note['id']}")
    assert resp.headers["location"] == "/notas"


async def test_invalid_note_rerenders_form(client_factory):
    ana = await _logged_in(client_factory, "ana@example.com")
    resp = await ana.post("/notas/nota-nueva", data={"title": "x" * 31, "description": ""})
    assert resp.status_code == 400
    body = resp.json()
    assert body["view"] == "notes/new-note"
    assert {e["field"] for e in body["errors"]} == {"title", "description"}
    assert await _note_ids(ana) == []


async def test_other_users_notes_are_off_limits(client_factory):
    ana = await _logged_in(client_factory, "ana@example.com")
    beto = await _logged_in(client_factory, "beto@example.com", name="Beto")

    await ana.post("/notas/nota-nueva", data={"title": "Privada", "description": "Solo de Ana"})
    [note_id] = await _note_ids(ana)
    assert await _note_ids(beto) == []

    resp = await beto.get(f"/notas/editar/{note_id}")
    assert resp.status_code == 303 and resp.headers["location"] == "/notas"
    assert await _flash_after(beto, resp) == ["No tienes permiso para modificar esta nota"]

    resp = await beto.put(f"/notas/editar/{note_id}", data={"title": "Hack", "description": "jaja"})
    assert resp.status_code == 303
    resp = await beto.delete(f"/notas/borrar/{note_id}")
    assert resp.status_code == 303

    note = (await ana.get(f"/notas/editar/{note_id}")).json()["note"]
    assert (note["title"], note["description"], note["is_active"]) == ("Privada", "Solo de Ana", True)


async def test_unknown_note_redirects_with_message(client_factory):
    ana = await _logged_in(client_factory, "ana@example.com")
    for url in ("/notas/editar/999", "/notas/editar/abc"):
        resp = await ana.get(url)
        assert resp.status_code == 303
        assert await _flash_after(ana, resp) == ["La nota solicitada no existe"]


async def test_notes_pagination(client_factory):
    ana = await _logged_in(client_factory, "ana@example.com")
    for i in range(12):
        await ana.post("/notas/nota-nueva", data={"title": f"Nota {i}", "description": "texto"})

    first = (await ana.get("/notas")).json()["notes"]
    second = (await ana.get("/notas", params={"page": 2})).json()["notes"]
    assert first["total"] == 12 and first["total_pages"] == 2
    assert len(first["items"]) == 10 and len(second["items"]) == 2
    assert not {n["id"] for n in first["items"]} & {n["id"] for n in second["items"]}


async def test_logout_invalidates_session_server_side(client_factory):
    ana = await _logged_in(client_factory, "ana@example.com")
    sid = ana.cookies.get("sid")

    resp = await ana.get("/usuarios/salir")
    assert resp.status_code == 303
    assert resp.headers["location"] == "/usuarios/ingreso"
    assert "sid" not in ana.cookies

    replay = await client_factory()
    replay.cookies.set("sid", sid)
    resp = await replay.get("/notas")
    assert resp.headers["location"] == "/usuarios/ingreso"


async def test_faq_rejects_foreign_referer(client_factory):
    ana = await _logged_in(client_factory, "ana@example.com")
    assert (await ana.get("/faq")).json()["view"] == "faq"
    assert (await ana.get("/faq", headers={"referer": "http://testserver/notas"})).status_code == 200
    resp = await ana.get("/faq", headers={"referer": "http://evil.example/"})
    assert resp.status_code == 403


async def test_index_and_contact(client):
    assert (await client.get("/")).json()["view"] == "index"
    assert (await client.get("/contacto")).json()["view"] == "contact"

    bad = await client.post("/contacto", data={"name": "A", "email": "x", "subject": "", "message": ""})
    assert bad.status_code == 400

    resp = await client.post(
        "/contacto",
        data={"name": "Ana", "email": "ana@example.com", "subject": "Hola", "message": "Un mensaje de prueba"},
    )
    assert resp.status_code == 303
    assert resp.headers["location"] == "/"


async def test_admin_routes(client_factory, make_user):
    await make_user("root@example.com", admin=True)
    ana = await _logged_in(client_factory, "ana@example.com")
    admin = await client_factory()
    assert (await _login(admin, "root@example.com")).headers["location"] == "/notas"

    assert (await ana.get("/admin/usuarios")).status_code == 403

    listed = (await admin.get("/admin/usuarios")).json()
    ana_id = next(u["id"] for u in listed if u["email"] == "ana@example.com")
    assert all("password_hash" not in u for u in listed)

    await ana.post(
        "/contacto",
        data={"name": "Ana", "email": "ana@example.com", "subject": "Hola", "message": "Un mensaje de prueba"},
    )
    [msg] = (await admin.get("/admin/contactos")).json()
    assert msg["user_id"] == ana_id
    assert msg["status_text"] == "Pendiente"
    assert (await admin.post(f"/admin/contactos/{msg['id']}/leido")).json()["status"] == "read"
    assert (await admin.post(f"/admin/contactos/{msg['id']}/respondido")).json()["status"] == "replied"
    assert (await admin.post("/admin/contactos/999/leido")).status_code == 404

    resp = await admin.post(f"/admin/usuarios/{ana_id}/desactivar")
    assert resp.status_code == 200
    assert resp.json()["is_active"] is False

    resp = await ana.get("/notas")
    assert resp.headers["location"] == "/usuarios/ingreso"


async def test_healthz(client):
    resp = await client.get("/healthz")
    assert resp.json() == {"ok": True}
    assert resp.headers["x-request-id"]


async def test_flash_is_shown_once(client):
    resp = await _signup(client, "ana@example.com")
    assert await _flash_after(client, resp)
    assert (await client.get("/usuarios/ingreso")).json()["flash"] == []


async def test_forged_flash_cookie_is_ignored(client):
    forged = base64.urlsafe_b64encode(
        json.dumps({"flash": [{"category": "success_msg", "text": "Tu cuenta fue verificada"}]}).encode()
    ).decode()
    client.cookies.set("mg_session", forged)
    client.cookies.set("flash", forged)

    assert (await client.get("/")).json()["flash"] == []


async def test_signup_rejections_are_padded_alike(client, monkeypatch):
    monkeypatch.setattr(settings, "signup_reject_min_seconds", 0.2)
    monkeypatch.setattr(settings, "signup_reject_jitter_seconds", 0.05)
    assert (await _signup(client, "a@b.com")).status_code == 303

    started = time.monotonic()
    duplicate = await _signup(client, "a@b.com", name="Otra")
    duplicate_s = time.monotonic() - started

    started = time.monotonic()
    short = await _signup(client, "c@d.com", password="abc")
    short_s = time.monotonic() - started

    assert duplicate.status_code == short.status_code == 400
    assert duplicate_s >= 0.2 and short_s >= 0.2
    assert abs(duplicate_s - short_s) < 0.05 + 0.1


async def test_overlong_search_rerenders_list(client_factory):
    ana = await _logged_in(client_factory, "ana@example.com")
    resp = await ana.get("/notas", params={"search": "x" * 101})
    assert resp.status_code == 400
    body = resp.json()
    assert body["view"] == "notes/all-notes"
    assert [(e["field"], e["rule"]) for e in body["errors"]] == [("search", "max_length")]
