import json
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from urllib.parse import parse_qs, urlparse

import pytest


class FakeSonarState:
    """In-memory SonarQube: quality gates, quality profiles, their rules and settings."""

    def __init__(self):
        self.gates = {}      # name -> {"name", "isDefault", "isBuiltIn", "conditions": [...]}
        self.profiles = {}   # key  -> {"key", "name", "language", "isDefault", "rules": [rule keys]}
        self.posts = []      # (path, form) in call order
        self.gets = []       # (path, query)
        self.fail_delete_ids = set()
        self.fail_activate_rules = set()
        self.settings = {}   # component ("" = global) -> {key: {"value"|"values"|"fieldValues": ...}}
        self.defaults = {}   # key -> entry, reported as inherited everywhere
        self._counter = 0

    def next_id(self, prefix):
        self._counter += 1
        return f"{prefix}{self._counter}"

    def add_gate(self, name, conditions=(), is_default=False):
        self.gates[name] = {
            "name": name,
            "isDefault": is_default,
            "isBuiltIn": False,
            "conditions": [dict(c) for c in conditions],
        }

    def add_profile(self, key, name, language, rules=(), is_default=False):
        self.profiles[key] = {
            "key": key,
            "name": name,
            "language": language,
            "isDefault": is_default,
            "rules": list(rules),
        }

    def set_setting(self, key, component="", **entry):
        self.settings.setdefault(component, {})[key] = entry

    def visible_settings(self, component=""):
        """Effective values at a scope, flagged `inherited` when set elsewhere."""
        out = {k: dict(v, key=k, inherited=True) for k, v in self.defaults.items()}
        if component:
            out.update({k: dict(v, key=k, inherited=True) for k, v in self.settings.get("", {}).items()})
        out.update({k: dict(v, key=k, inherited=False) for k, v in self.settings.get(component, {}).items()})
        return out

    def posted(self, path):
        return [form for p, form in self.posts if p == path]


class _SonarHandler(BaseHTTPRequestHandler):
    state = FakeSonarState()

    protocol_version = "HTTP/1.1"

    def _auth_ok(self) -> bool:
        return self.headers.get("Authorization", "").strip() == "Bearer TEST"

    def _send_json(self, status: int, obj) -> None:
        raw = json.dumps(obj).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(raw)))
        self.end_headers()
        self.wfile.write(raw)

    def _send_empty(self) -> None:
        self.send_response(204)
        self.send_header("Content-Length", "0")
        self.end_headers()

    def _not_found(self) -> None:
        self._send_json(404, {"errors": [{"msg": "not found"}]})

    # ---------- GET ----------

    def do_GET(self):  # noqa: N802
        url = urlparse(self.path)
        q = {k: v[0] for k, v in parse_qs(url.query).items()}
        st = _SonarHandler.state
        st.gets.append((url.path, q))
        if not self._auth_ok():
            self._send_json(401, {"errors": [{"msg": "unauthorized"}]})
            return

        if url.path == "/api/qualitygates/show":
            gate = st.gates.get(q.get("name", ""))
            if gate is None:
                self._not_found()
            else:
                self._send_json(200, gate)
        elif url.path == "/api/qualityprofiles/search":
            found = [
                {k: v for k, v in p.items() if k != "rules"}
                for p in st.profiles.values()
                if p["language"] == q.get("language") and p["name"] == q.get("qualityProfile")
            ]
            self._send_json(200, {"profiles": found})
        elif url.path == "/api/qualityprofiles/show":
            profile = st.profiles.get(q.get("key", ""))
            if profile is None:
                self._not_found()
            else:
                body = {k: v for k, v in profile.items() if k != "rules"}
                body["activeRuleCount"] = len(profile["rules"])
                self._send_json(200, {"profile": body})
        elif url.path == "/api/rules/search":
            profile = st.profiles.get(q.get("qprofile", ""))
            keys = profile["rules"] if profile else []
            page, size = int(q.get("p", 1)), int(q.get("ps", 100))
            chunk = keys[(page - 1) * size: page * size]
            self._send_json(
                200,
                {
                    "paging": {"pageIndex": page, "pageSize": size, "total": len(keys)},
                    "rules": [
                        {"key": k, "repo": k.split(":")[0], "name": k, "lang": profile["language"], "severity": "MAJOR"}
                        for k in chunk
                    ],
                },
            )
        elif url.path == "/api/settings/values":
            visible = st.visible_settings(q.get("component", ""))
            keys = q["keys"].split(",") if q.get("keys") else list(visible)
            self._send_json(200, {"settings": [visible[k] for k in keys if k in visible]})
        else:
            self._not_found()

    # ---------- POST ----------

    def do_POST(self):  # noqa: N802
        url = urlparse(self.path)
        length = int(self.headers.get("Content-Length", "0"))
        body = self.rfile.read(length).decode("utf-8") if length else ""
        multi = parse_qs(body)
        form = {k: v[0] for k, v in multi.items()}
        st = _SonarHandler.state
        st.posts.append((url.path, form))
        if not self._auth_ok():
            self._send_json(401, {"errors": [{"msg": "unauthorized"}]})
            return

        if url.path == "/api/qualitygates/create":
            st.add_gate(form["name"])
            self._send_json(200, {"name": form["name"]})
        elif url.path == "/api/qualitygates/set_as_default":
            for gate in st.gates.values():
                gate["isDefault"] = gate["name"] == form["name"]
            self._send_empty()
        elif url.path == "/api/qualitygates/create_condition":
            gate = st.gates.get(form.get("gateName", ""))
            if gate is None:
                self._not_found()
                return
            cond = {"id": st.next_id("n"), "metric": form["metric"], "op": form.get("op", "LT"), "error": form["error"]}
            gate["conditions"].append(cond)
            self._send_json(200, cond)
        elif url.path == "/api/qualitygates/update_condition":
            for gate in st.gates.values():
                for cond in gate["conditions"]:
                    if cond["id"] == form["id"]:
                        cond.update(metric=form["metric"], error=form["error"], op=form.get("op", cond["op"]))
            self._send_empty()
        elif url.path == "/api/qualitygates/delete_condition":
            if form["id"] in st.fail_delete_ids:
                self._send_json(400, {"errors": [{"msg": "condition is locked"}]})
                return
            for gate in st.gates.values():
                gate["conditions"] = [c for c in gate["conditions"] if c["id"] != form["id"]]
            self._send_empty()
        elif url.path == "/api/qualityprofiles/create":
            key = st.next_id("AX")
            st.add_profile(key, form["name"], form["language"])
            self._send_json(200, {"profile": {"key": key, "name": form["name"], "language": form["language"]}})
        elif url.path == "/api/qualityprofiles/set_default":
            for p in st.profiles.values():
                if p["language"] == form["language"]:
                    p["isDefault"] = p["name"] == form["qualityProfile"]
            self._send_empty()
        elif url.path == "/api/qualityprofiles/rename":
            st.profiles[form["key"]]["name"] = form["name"]
            self._send_empty()
        elif url.path == "/api/qualityprofiles/activate_rule":
            if form["rule"] in st.fail_activate_rules:
                self._send_json(400, {"errors": [{"msg": "unknown rule"}]})
                return
            rules = st.profiles[form["key"]]["rules"]
            if form["rule"] not in rules:
                rules.append(form["rule"])
            self._send_empty()
        elif url.path == "/api/qualityprofiles/deactivate_rule":
            rules = st.profiles[form["key"]]["rules"]
            if form["rule"] in rules:
                rules.remove(form["rule"])
            self._send_empty()
        elif url.path == "/api/settings/set":
            if "values" in multi:
                entry = {"values": multi["values"]}
            elif "fieldValues" in form:
                entry = {"fieldValues": [json.loads(form["fieldValues"])]}
            else:
                entry = {"value": form["value"]}
            st.set_setting(form["key"], form.get("component", ""), **entry)
            self._send_empty()
        elif url.path == "/api/settings/reset":
            scope = st.settings.get(form.get("component", ""), {})
            for key in form["keys"].split(","):
                scope.pop(key, None)
            self._send_empty()
        else:
            self._not_found()

    def log_message(self, fmt, *args):  # silence server logs during tests
        return


@pytest.fixture()
def sonar():
    """Starts a fake SonarQube; yields (base_url, state)."""
    _SonarHandler.state = FakeSonarState()
    server = ThreadingHTTPServer(("127.0.0.1", 0), _SonarHandler)
    host, port = server.server_address
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield f"http://{host}:{port}", _SonarHandler.state
    server.shutdown()
    thread.join(timeout=1.0)
