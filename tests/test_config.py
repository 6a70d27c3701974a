"""Configuration loading: defaults, TOML overrides, env overrides."""

from core.config import ReconConfig
from tools.billing.service import BillingService


def test_defaults_when_file_missing(tmp_path):
    config = ReconConfig(config_path=tmp_path / "missing.toml")
    assert config.billing.tax_rate == 0.19
    assert config.billing.payment_window_days == 14
    assert config.store.path == "data/db.json"
    assert config.company.name == "Auto-Anlage GmbH"


def test_toml_overrides_defaults(tmp_path):
    path = tmp_path / "settings.toml"
    path.write_text(
        '[billing]\ntax_rate = 0.07\ninvoice_prefix = "INV"\n\n[company]\nname = "Glanzwerk KG"\n',
        encoding="utf-8",
    )
    config = ReconConfig(config_path=path)
    assert config.billing.tax_rate == 0.07
    assert config.billing.invoice_prefix == "INV"
    assert config.billing.payment_window_days == 14
    assert config.company.name == "Glanzwerk KG"
    assert config.company.email == "rechnung@auto-anlage.de"


def test_broken_toml_falls_back(tmp_path):
    path = tmp_path / "settings.toml"
    path.write_text("[billing\ntax_rate = ", encoding="utf-8")
    assert ReconConfig(config_path=path).billing.tax_rate == 0.19


def test_env_overrides(tmp_path, monkeypatch):
    monkeypatch.setenv("RECON_DATA_FILE", str(tmp_path / "shop.json"))
    monkeypatch.setenv("RECON_PAYMENT_WINDOW_DAYS", "30")
    monkeypatch.setenv("RECON_SERVER_PORT", "not-a-port")
    config = ReconConfig(config_path=tmp_path / "missing.toml")
    assert config.store.path == str(tmp_path / "shop.json")
    assert config.billing.payment_window_days == 30
    assert config.server.port == 8080


def test_reload_reports_changes(tmp_path):
    path = tmp_path / "settings.toml"
    path.write_text("[billing]\npayment_window_days = 14\n", encoding="utf-8")
    config = ReconConfig(config_path=path)
    path.write_text("[billing]\npayment_window_days = 21\n", encoding="utf-8")
    changes = config.reload()
    assert changes == {"billing.payment_window_days": {"old": 14, "new": 21}}


def test_service_from_config(tmp_path, monkeypatch):
    monkeypatch.setenv("RECON_DATA_FILE", str(tmp_path / "db.json"))
    monkeypatch.setenv("RECON_TAX_RATE", "0.16")
    config = ReconConfig(config_path=tmp_path / "missing.toml")
    service = BillingService.from_config(config)
    assert service.tax_rate == 0.16
    assert service.store.path == tmp_path / "db.json"


def test_nonsense_billing_values_fall_back(tmp_path):
    path = tmp_path / "settings.toml"
    path.write_text(
        '[billing]\ntax_rate = 19\npayment_window_days = 0\ninvoice_prefix = " "\n',
        encoding="utf-8",
    )
    billing = ReconConfig(config_path=path).billing
    assert billing.tax_rate == 0.19
    assert billing.payment_window_days == 14
    assert billing.invoice_prefix == "RE"


def test_tax_rate_bounds_are_inclusive(tmp_path):
    path = tmp_path / "settings.toml"
    path.write_text("[billing]\ntax_rate = 1.0\n", encoding="utf-8")
    assert ReconConfig(config_path=path).billing.tax_rate == 1.0
    path.write_text("[billing]\ntax_rate = 0\n", encoding="utf-8")
    assert ReconConfig(config_path=path).billing.tax_rate == 0
    path.write_text("[billing]\ntax_rate = 1.01\n", encoding="utf-8")
    assert ReconConfig(config_path=path).billing.tax_rate == 0.19
