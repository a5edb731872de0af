"""
Pytest Configuration and Fixtures
"""

import sys
import tempfile
from pathlib import Path
from typing import Dict, Generator, List

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from dossier_core.extractor_base import extract_file
from dossier_core.insight_types import FileInsight, SourceFile
from dossier_core.knowledge_base import KnowledgeBase, aggregate


USER_RS = """//! User model.

use std::fmt;

const MAX_EMAIL: usize = 254;

/// A registered account.
#[derive(Debug, Clone)]
#[serde(rename_all = "camelCase")]
pub struct User {
    pub id: i64,
    pub email: Option<String>,
}

impl User {
    /// Build a user.
    pub fn new(id: i64, email: Option<String>) -> Self {
        User { id, email }
    }

    fn has_email(&self) -> bool {
        self.email.is_some()
    }
}
"""

MAIN_RS = """use axum::{routing::get, Router};

async fn list_users() -> String {
    String::from("[]")
}

fn main() {
    let app = Router::new().route("/users", get(list_users));
    serve(app);
}

fn serve(app: Router) {
    println!("serving");
}
"""

ROUTES_PY = '''"""HTTP routes."""
from fastapi import FastAPI

from services.billing import charge

app = FastAPI()


@app.get("/invoices/{invoice_id}")
def get_invoice(invoice_id: int, verbose: Optional[bool] = None) -> dict:
    """Return one invoice."""
    return load_invoice(invoice_id)


@app.post("/invoices")
def create_invoice(amount: int) -> dict:
    return charge(amount)


def load_invoice(invoice_id):
    return {"id": invoice_id}
'''

BILLING_PY = '''from dataclasses import dataclass


@dataclass
class Invoice:
    """A billed amount."""
    amount: int
    note: Optional[str] = None


def charge(amount: int) -> dict:
    invoice = Invoice(amount)
    return record(invoice)


def record(invoice):
    return {"amount": invoice.amount}
'''

USER_CONTROLLER_JAVA = """package com.shop.web;

import org.springframework.web.bind.annotation.*;

@RestController
@RequestMapping("/users")
public class UserController {

    /** Fetch a user by id. */
    @GetMapping("/{id}")
    public String getUser(@PathVariable Long id) {
        return "user";
    }

    @PostMapping
    public String createUser(String body) {
        return body;
    }
}
"""

SAMPLE_SOURCES: Dict[str, str] = {
    "models/user.rs": USER_RS,
    "src/main.rs": MAIN_RS,
    "app/api/routes.py": ROUTES_PY,
    "app/services/billing.py": BILLING_PY,
    "web/UserController.java": USER_CONTROLLER_JAVA,
}


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def sample_sources() -> List[SourceFile]:
    """In-memory sources of a small mixed-language project."""
    return [
        SourceFile(file_path=path, raw_text=text.encode("utf-8"))
        for path, text in SAMPLE_SOURCES.items()
    ]


@pytest.fixture
def sample_project(temp_dir: Path) -> Path:
    """Create a sample project structure for testing."""
    project = temp_dir / "shop"
    for rel_path, text in SAMPLE_SOURCES.items():
        path = project / rel_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")

    # Files the source walk must skip
    (project / "target").mkdir()
    (project / "target" / "generated.rs").write_text("fn generated() {}\n")
    (project / "README.md").write_text("# Shop\n")
    return project


@pytest.fixture
def sample_insights(sample_sources) -> List[FileInsight]:
    return [extract_file(s.file_path, s.raw_text) for s in sample_sources]


@pytest.fixture
def sample_kb(sample_insights) -> KnowledgeBase:
    return aggregate(sample_insights)


@pytest.fixture
def make_kb():
    """Factory building a Knowledge Base over a {path: text} mapping."""
    def build(sources: Dict[str, str]) -> KnowledgeBase:
        return aggregate(extract_file(path, text) for path, text in sources.items())
    return build
