"""
goboundcheck local analysis server.
Exposes HTTP API for the editor extension: analyze an unsaved buffer or a package directory.
"""
from __future__ import annotations
import logging
from pathlib import Path
logging.basicConfig(level=logging.INFO)
log = logging.getLogger(__name__)
from typing import Any, Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

# Run from backend directory so these imports work
from analyzer.bounds_checker import (
    ANALYZER_DOC,
    ANALYZER_NAME,
    DIAGNOSTIC_CODE,
    UNGUARDED_ACCESS_MESSAGE,
    check_package,
)
from analyzer.type_checker import Diagnostic
from parser.package_loader import Package, SourceError, load_package, parse_go_source


app = FastAPI(title="goboundcheck Analysis Server", version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/")
def root() -> dict:
    """goboundcheck API. Use /docs for Swagger or /health to check server."""
    return {"name": "goboundcheck Analysis Server", "docs": "/docs", "health": "/health"}


class OpenBuffer(BaseModel):
    content: str
    file_path: str


class AnalyzeRequest(BaseModel):
    content: str
    file_path: str
    open_buffers: Optional[list[OpenBuffer]] = None


class PackageRequest(BaseModel):
    repo_path: str
    include_tests: bool = True


def _diagnostic_to_dict(d: Diagnostic) -> dict[str, Any]:
    return {
        "file": d.file,
        "line": d.line,
        "column": d.column,
        "severity": d.severity,
        "message": d.message,
        "code": d.code or "",
    }


@app.post("/analyze")
def analyze(request: AnalyzeRequest) -> dict:
    """Analyze an unsaved buffer. Other open buffers of the same package supply declarations."""
    try:
        current = parse_go_source(request.content.encode("utf-8"), request.file_path)
        files = [current]
        for ob in request.open_buffers or []:
            if ob.file_path == request.file_path:
                continue
            other = parse_go_source(ob.content.encode("utf-8"), ob.file_path)
            if other.package_name == current.package_name:
                files.append(other)
    except SourceError as e:
        raise HTTPException(status_code=400, detail=str(e))

    package = Package(name=current.package_name, directory=str(Path(request.file_path).parent), files=files)
    diagnostics = [d for d in check_package(package) if d.file == request.file_path]
    log.info("Analyze %s: %d related buffer(s), %d diagnostics", request.file_path, len(files) - 1, len(diagnostics))
    return {
        "diagnostics": [_diagnostic_to_dict(d) for d in diagnostics],
        "file": request.file_path,
    }


@app.post("/analyze/package")
def analyze_package(request: PackageRequest) -> dict:
    """Analyze every Go file of a package directory on disk."""
    repo_path = str(Path(request.repo_path).resolve())
    if not Path(repo_path).is_dir():
        raise HTTPException(status_code=400, detail=f"Invalid repo_path: {repo_path!r}")
    try:
        package = load_package(repo_path, include_tests=request.include_tests)
    except SourceError as e:
        raise HTTPException(status_code=400, detail=str(e))
    diagnostics = check_package(package)
    log.info("Analyze package %s: %d file(s), %d diagnostics", repo_path, len(package.files), len(diagnostics))
    return {
        "diagnostics": [_diagnostic_to_dict(d) for d in diagnostics],
        "package": package.name,
        "files": [f.path for f in package.files],
    }


@app.get("/rules")
def get_rules() -> dict:
    """Return the analyzer definition."""
    return {"rules": [{
        "name": ANALYZER_NAME,
        "doc": ANALYZER_DOC,
        "code": DIAGNOSTIC_CODE,
        "message": UNGUARDED_ACCESS_MESSAGE,
    }]}


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}
