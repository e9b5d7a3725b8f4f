"""
FastAPI REST API Interface
Programmatic access to Obscura for automation and integration
"""

import threading
from typing import List, Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from obscura.core.deobfuscation_presets import PresetLibrary
from obscura.core.deobfuscator import DeobfuscateOptions
from obscura.core.engine import ObscuraEngine
from obscura.core.errors import PipelineError

API_VERSION = "1.0.0"
MAX_CODE_SIZE = 5 * 1024 * 1024  # 5MB


class DeobfuscateRequest(BaseModel):
    """Body of POST /api/deobfuscate"""
    code: str = Field(..., description="JavaScript source")
    preset: Optional[str] = Field(None, description="Named option preset")
    auto: Optional[bool] = None
    aggressive: Optional[bool] = None
    ast_optimize: Optional[bool] = None
    rename_variables: Optional[bool] = None
    llm: Optional[bool] = None
    unpack: Optional[bool] = None
    jsvmp: Optional[bool] = None
    advanced: Optional[bool] = None
    aggressive_vm: Optional[bool] = None
    beautify: Optional[bool] = None

    def to_options(self) -> DeobfuscateOptions:
        overrides = {
            name: getattr(self, name)
            for name in ('auto', 'aggressive', 'ast_optimize', 'rename_variables', 'llm', 'unpack',
                         'jsvmp', 'advanced', 'aggressive_vm', 'beautify')
            if getattr(self, name) is not None
        }
        if self.preset:
            return DeobfuscateOptions.from_preset(self.preset, **overrides)
        return DeobfuscateOptions(**overrides)


class CryptoRequest(BaseModel):
    """Body of POST /api/crypto"""
    code: str = Field(..., description="JavaScript source")
    use_ai: bool = Field(False, description="Include AI-assisted detections")


class ClassifyRequest(BaseModel):
    """Body of POST /api/classify"""
    code: str = Field(..., description="JavaScript source")


class ClassifyResponse(BaseModel):
    obfuscationType: List[str]


app = FastAPI(
    title="Obscura API",
    description="JavaScript deobfuscation and crypto usage analysis",
    version=API_VERSION,
    docs_url="/docs",
    redoc_url="/redoc"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Engine caches are not synchronized; sync endpoints run in a thread pool
engine = ObscuraEngine()
engine_lock = threading.Lock()


def _require_code(code: str) -> None:
    if not code or not code.strip():
        raise HTTPException(status_code=400, detail="Empty input: 'code' must contain JavaScript source")
    if len(code) > MAX_CODE_SIZE:
        raise HTTPException(status_code=413, detail="Input too large. Maximum size: 5MB")


@app.get("/")
async def root():
    """API root endpoint - service info"""
    return {
        "service": "Obscura API",
        "version": API_VERSION,
        "status": "operational",
        "endpoints": {
            "deobfuscate": "/api/deobfuscate",
            "crypto": "/api/crypto",
            "classify": "/api/classify",
            "health": "/health",
            "docs": "/docs"
        }
    }


@app.get("/health")
async def health_check():
    """Health check endpoint for monitoring"""
    return {
        "status": "healthy",
        "service": "obscura-api",
        "version": API_VERSION,
        "presets": PresetLibrary.list_presets(),
    }


@app.post("/api/deobfuscate")
def deobfuscate(request: DeobfuscateRequest):
    """
    Deobfuscate JavaScript source

    Example:
    ```bash
    curl -X POST "http://localhost:8000/api/deobfuscate" \
         -H "Content-Type: application/json" \
         -d '{"code": "var _0x1a2b=[\\"log\\"];console[_0x1a2b[0]](1);", "preset": "readable"}'
    ```
    """
    _require_code(request.code)
    try:
        options = request.to_options()
    except (ValueError, TypeError) as e:
        raise HTTPException(status_code=422, detail=str(e))

    try:
        with engine_lock:
            result = engine.deobfuscate(request.code, options)
    except PipelineError as e:
        raise HTTPException(status_code=500, detail=f"Deobfuscation failed in stage {e.stage}: {e.cause}")
    return result.to_dict()


@app.post("/api/crypto")
def detect_crypto(request: CryptoRequest):
    """
    Detect cryptographic primitives and rate their use

    Example:
    ```bash
    curl -X POST "http://localhost:8000/api/crypto" \
         -H "Content-Type: application/json" \
         -d '{"code": "CryptoJS.AES.encrypt(data, key, {mode: CryptoJS.mode.ECB});"}'
    ```
    """
    _require_code(request.code)
    with engine_lock:
        result = engine.detect_crypto(request.code, use_ai=request.use_ai)
    return result.to_dict()


@app.post("/api/classify", response_model=ClassifyResponse)
def classify(request: ClassifyRequest):
    """List the obfuscation techniques detected in the source"""
    _require_code(request.code)
    return {"obfuscationType": engine.classify(request.code)}


# Run server with: uvicorn obscura.interfaces.api:app --host 0.0.0.0 --port 8000
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
