"""
Pytest configuration and shared fixtures for the procurement test suite.
"""
import os
import shutil
import tempfile
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Generator

import pytest

# Run from the project root so relative default paths resolve
PROJECT_ROOT = Path(__file__).parent.parent
os.chdir(PROJECT_ROOT)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Provide a temporary directory for test files."""
    tmp_path = tempfile.mkdtemp(prefix="procurement_test_")
    yield Path(tmp_path)
    shutil.rmtree(tmp_path, ignore_errors=True)


@pytest.fixture
def test_config(temp_dir: Path, monkeypatch) -> "Config":
    """Provide a test configuration with isolated directories."""
    # Keep a developer's config/procurement_settings.json out of the tests
    monkeypatch.setenv("CONFIG_DIR", str(temp_dir / "config"))
    from config import Config

    config = Config()
    # Override paths to use temp directory
    config.output_dir = temp_dir / "output"
    config.output_dir.mkdir(parents=True, exist_ok=True)
    config.db_path = temp_dir / "output" / "procurement.db"
    config.backup_dir = temp_dir / "backups"
    config.suppliers_csv = temp_dir / "data" / "suppliers.csv"
    config.products_csv = temp_dir / "data" / "products.csv"
    config.stores_csv = temp_dir / "data" / "stores.csv"
    config.receive_max_retries = 3
    config.retry_backoff_seconds = 0.01
    config.lock_timeout_seconds = 30
    config.low_stock_threshold = 10

    # Ensure data directory exists
    config.suppliers_csv.parent.mkdir(parents=True, exist_ok=True)

    return config


@pytest.fixture
def sample_suppliers_csv(test_config) -> Path:
    """Create a sample suppliers CSV file."""
    csv_path = test_config.suppliers_csv
    content = """id,name,code,tax_id,email,phone,aliases
SUP-001,Acme Supplies Ltd,ACME,P051234567X,accounts@acme.co.ke,0722 000 111,Acme|ACME Ltd
SUP-002,Global Logistics Ltd,GLOB,P059876543Y,ops@global.co.ke,0733 222 333,Global Log
SUP-003,Tech Solutions Inc,TECH,,,,"""
    csv_path.write_text(content)
    return csv_path


@pytest.fixture
def sample_products_csv(test_config) -> Path:
    """Create a sample products CSV file."""
    csv_path = test_config.products_csv
    content = """id,code,name,category,unit_of_measure,tax_class
P-001,CHR-01,Office Chair,Furniture,ea,16%
P-002,RCE-05,Rice 5kg,Food,bag,zero_rated
P-003,BK-100,Maths Textbook,Books,ea,exempted"""
    csv_path.write_text(content)
    return csv_path


@pytest.fixture
def sample_stores_csv(test_config) -> Path:
    """Create a sample stores CSV file."""
    csv_path = test_config.stores_csv
    content = """id,code,name,address,manager_name,is_active
S-A,STA,Store A,Moi Avenue,Jane Doe,true
S-B,STB,Store B,Kenyatta Road,John Roe,yes
S-X,STX,Closed Store,Old Town,,false"""
    csv_path.write_text(content)
    return csv_path


@pytest.fixture
def master_data(sample_suppliers_csv, sample_products_csv, sample_stores_csv) -> None:
    """Write all three master-data CSVs."""
    return None


@pytest.fixture
def directory(test_config, master_data) -> "Directory":
    """Provide master data loaded from the sample CSVs."""
    from procurement.directory import Directory
    return Directory.from_csv(test_config.suppliers_csv, test_config.products_csv, test_config.stores_csv)


@pytest.fixture
def test_db(test_config) -> "Database":
    """Provide a test database instance."""
    from procurement.database import Database
    return Database(
        test_config.db_path,
        lock_timeout=test_config.lock_timeout_seconds,
        max_retries=test_config.receive_max_retries,
        retry_backoff=test_config.retry_backoff_seconds,
    )


@pytest.fixture
def service(test_config, master_data) -> "PurchaseOrderService":
    """Provide a service wired to the isolated database and sample master data."""
    from procurement.service import PurchaseOrderService
    return PurchaseOrderService(test_config)


@pytest.fixture
def order_input() -> "PurchaseOrderInput":
    """One line: 100 x P-001 at 116.00 tax-inclusive (16%)."""
    from models.purchase_order import PurchaseOrderInput, PurchaseOrderItemInput
    return PurchaseOrderInput(
        supplier_id="SUP-001",
        order_date=date(2026, 1, 15),
        expected_delivery_date=date(2026, 1, 30),
        notes="Chairs for the new branch",
        items=[PurchaseOrderItemInput(product_id="P-001", quantity=100, unit_price=Decimal("116.00"))],
    )


@pytest.fixture
def sent_order(service, order_input) -> "PurchaseOrder":
    """A sent order built from order_input, ready to receive against."""
    order = service.create_purchase_order(order_input, actor="buyer")
    return service.send_purchase_order(order.id, actor="buyer")


# Configure pytest markers
def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "api: API tests")
    config.addinivalue_line("markers", "slow: Slow tests")
