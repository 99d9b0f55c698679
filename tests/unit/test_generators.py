"""
Unit tests for the nginx, ClickHouse, Prometheus, .env and Go generators.
"""

import stat
import xml.etree.ElementTree as ET

import pytest
import yaml

from shivish_deploy.generators import (
    letsencrypt_paths,
    parse_env,
    render_config_xml,
    render_dockerfile,
    render_env,
    render_go_mod,
    render_http_config,
    render_placeholder_main,
    render_prometheus_config,
    render_ssl_config,
    render_users_xml,
    self_signed_paths,
    write_env,
    write_text_file,
)
from shivish_deploy.generators.env_file import env_sections


class TestWriteTextFile:
    """Atomic writes with optional keep-existing semantics"""

    def test_creates_parents(self, tmp_path):
        path = tmp_path / "a" / "b" / "file.conf"

        assert write_text_file(path, "content") is True
        assert path.read_text() == "content"

    def test_keeps_existing_when_not_overwriting(self, tmp_path):
        path = tmp_path / "file.conf"
        path.write_text("hand edited")

        assert write_text_file(path, "generated", overwrite=False) is False
        assert path.read_text() == "hand edited"

    def test_applies_mode(self, tmp_path):
        path = tmp_path / ".env"
        write_text_file(path, "A=1\n", mode=0o600)

        assert stat.S_IMODE(path.stat().st_mode) == 0o600

    def test_leaves_no_temporary_files(self, tmp_path):
        write_text_file(tmp_path / "file.conf", "x")

        assert [p.name for p in tmp_path.iterdir()] == ["file.conf"]


class TestNginxConfig:
    """Reverse proxy configuration for every route"""

    def test_http_config_has_upstreams_in_http_context(self, stack):
        config = render_http_config(stack)

        http_block = config.index("http {")
        server_block = config.index("server {")
        upstream = config.index("upstream auth_service {")
        assert http_block < upstream < server_block
        assert "server auth-service:8080;" in config
        assert "server user-service:8098;" in config

    def test_http_config_routes(self, stack):
        config = render_http_config(stack)

        assert "listen 80;" in config
        assert "listen 443" not in config
        for service in stack.microservices:
            assert f"location {service.route} {{" in config
            assert f"proxy_pass http://{service.upstream_name}/;" in config
        assert "proxy_pass http://grafana:3000/;" in config
        assert "proxy_pass http://minio:9001/;" in config
        assert "proxy_pass http://prometheus:9090/;" in config

    def test_ssl_config(self, stack):
        cert, key = self_signed_paths()
        config = render_ssl_config(stack, "203.0.113.7", cert, key)

        assert "return 301 https://$host$request_uri;" in config
        assert "listen 443 ssl;\n        http2 on;" in config
        assert "ssl http2" not in config
        assert "server_name 203.0.113.7;" in config
        assert "ssl_certificate /etc/ssl/shivish/fullchain.pem;" in config
        assert "ssl_certificate_key /etc/ssl/shivish/privkey.pem;" in config
        assert "ssl_protocols TLSv1.2 TLSv1.3;" in config
        assert 'add_header Strict-Transport-Security "max-age=31536000; includeSubDomains" always;' in config

    def test_gateway_gets_forwarded_host_over_tls(self, stack):
        config = render_ssl_config(stack, "example.com", *letsencrypt_paths("example.com"))

        assert config.count("proxy_set_header X-Forwarded-Host $host;") == 1
        assert "X-Forwarded-Host" not in render_http_config(stack)

    def test_letsencrypt_paths(self):
        assert letsencrypt_paths("api.example.com") == (
            "/etc/letsencrypt/live/api.example.com/fullchain.pem",
            "/etc/letsencrypt/live/api.example.com/privkey.pem",
        )

    def test_braces_balanced(self, stack):
        for config in (render_http_config(stack), render_ssl_config(stack, "x", "/c", "/k")):
            assert config.count("{") == config.count("}")


class TestClickHouseConfig:
    """config.xml and users.xml"""

    def test_config_xml(self, settings):
        root = ET.fromstring(render_config_xml(settings))

        assert root.tag == "clickhouse"
        assert root.findtext("http_port") == "8123"
        assert root.findtext("tcp_port") == "9000"
        assert root.findtext("listen_host") == "0.0.0.0"
        assert root.findtext("max_connections") == "4096"
        assert root.findtext("logger/level") == "information"
        assert root.find("mark_cache_size") is None

    def test_minimal_config_xml(self, settings):
        root = ET.fromstring(render_config_xml(settings, minimal=True))

        assert root.findtext("max_connections") == "256"
        assert root.findtext("max_concurrent_queries") == "20"
        assert root.findtext("max_server_memory_usage_to_ram_ratio") == "0.5"
        assert root.findtext("uncompressed_cache_size") == "0"
        assert root.findtext("logger/level") == "warning"

    def test_users_xml(self, settings):
        root = ET.fromstring(render_users_xml(settings))

        assert root.findtext("users/default/password") == ""
        assert root.findtext("users/analytics_user/password") == "clickhouse_secure_password_2024"
        assert root.findtext("users/analytics_user/networks/ip") == "::/0"
        assert root.findtext("profiles/default/max_memory_usage") == "10000000000"
        assert root.findtext("quotas/default/interval/duration") == "3600"


class TestPrometheusConfig:
    def test_one_job_per_service(self, stack):
        config = yaml.safe_load(render_prometheus_config(stack))
        jobs = {job["job_name"]: job["static_configs"][0]["targets"] for job in config["scrape_configs"]}

        assert config["global"]["scrape_interval"] == "15s"
        assert jobs["prometheus"] == ["localhost:9090"]
        assert jobs["user-service"] == ["user-service:8098"]
        assert len(jobs) == len(stack.microservices) + 1


class TestEnvFile:
    """Shared .env rendering, parsing and merging"""

    def test_sections_in_order(self, settings, stack):
        headings = [heading for heading, _ in env_sections(settings, stack)]

        assert headings[0] == "Database Configuration"
        assert headings[-1] == "Service Ports"
        assert any(h.startswith("Payment Gateway") for h in headings)

    def test_render_and_parse(self, settings, stack):
        values = parse_env(render_env(settings, stack))

        assert values["DB_HOST"] == "postgres"
        assert values["REDIS_PASSWORD"] == "redis_secure_password_2024"
        assert values["MINIO_ENDPOINT"] == "minio:9000"
        assert values["API_GATEWAY_PORT"] == "8081"
        assert values["USER_SERVICE_PORT"] == "8098"
        assert values["PHONEPE_MERCHANT_ID"] == "your_phonepe_merchant_id"

    def test_parse_handles_comments_quotes_and_export(self):
        text = '# comment\n\nexport A="quoted"\nB=\'single\'\nnot a pair\nC=x=y\nD=plain # note\nE="say \\"hi\\""\n'

        assert parse_env(text) == {"A": "quoted", "B": "single", "C": "x=y", "D": "plain", "E": 'say "hi"'}

    def test_write_env_merges_in_place(self, tmp_path):
        path = tmp_path / ".env"
        path.write_text("# Database\nB=2\nA=old\n\n# Payments\nD=keep  # inline\n")

        write_env(path, {"A": "new", "C": "3", "D": "keep"})

        assert path.read_text() == "# Database\nB=2\nA=new\n\n# Payments\nD=keep  # inline\nC=3\n"
        assert stat.S_IMODE(path.stat().st_mode) == 0o600

    def test_write_env_quotes_special_values(self, tmp_path):
        path = tmp_path / ".env"
        path.write_text("A=1\n")

        write_env(path, {"SMTP_PASSWORD": "pa ss#word", "TOKEN": "it's $HOME"})

        assert path.read_text() == "A=1\nSMTP_PASSWORD='pa ss#word'\nTOKEN=\"it's $HOME\"\n"
        assert parse_env(path.read_text()) == {"A": "1", "SMTP_PASSWORD": "pa ss#word", "TOKEN": "it's $HOME"}


class TestGoSources:
    """Placeholder sources for services without code"""

    @pytest.fixture
    def service(self, stack):
        return stack.get("user-service")

    def test_placeholder_main(self, service):
        source = render_placeholder_main(service)

        assert source.startswith("package main")
        assert 'http.HandleFunc("/health", healthHandler)' in source
        assert 'http.ListenAndServe(":8098", nil)' in source
        assert "user-service" in source

    def test_go_mod(self, service):
        assert render_go_mod(service) == "module user-service\n\ngo 1.21\n"

    def test_dockerfile(self, service):
        dockerfile = render_dockerfile(service)

        assert dockerfile.startswith("FROM alpine:latest")
        assert "COPY user-service ." in dockerfile
        assert "EXPOSE 8098" in dockerfile
        assert 'CMD ["./user-service"]' in dockerfile
