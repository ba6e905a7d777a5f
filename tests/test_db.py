import pytest

from telemetry_hub.db import make_engine


class TestMakeEngine:

    def test_sqlite_enables_foreign_keys(self, tmp_path):
        engine = make_engine(f"sqlite:///{tmp_path / 'x.db'}")
        with engine.connect() as conn:
            assert conn.exec_driver_sql("PRAGMA foreign_keys").scalar() == 1
        engine.dispose()

    @pytest.mark.parametrize("url", ["mysql://u:p@localhost/telemetry", "mssql+pyodbc://u:p@dsn"])
    def test_rejects_backends_without_upsert(self, url):
        with pytest.raises(ValueError, match="unsupported database backend"):
            make_engine(url)
