"""
Environment host: a FastAPI app that drives Playwright pages for the agent.

POST /execute {"action": ..., "params": {...}} with actions
current_location, snapshot, run_action, navigate and status.
POST /close_session releases a browser session.
"""
from __future__ import annotations

import logging
import os
import uuid
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException
from playwright.async_api import Browser, Page, Playwright, async_playwright
from pydantic import BaseModel, Field

logger = logging.getLogger("uwa.host")

app = FastAPI(title="UWA Environment Host", description="Browser environment for the web agent")

playwright_instance: Optional[Playwright] = None

SNAPSHOT_SCRIPT = """
() => {
  const TEXT_MAX = 10000;
  function getSelector(el) {
    if (el.id && /^[a-zA-Z][\\w-]*$/.test(el.id)) return `#${el.id}`;
    const tag = el.tagName.toLowerCase();
    const parent = el.parentElement;
    if (!parent) return tag;
    const siblings = [...parent.children].filter((c) => c.tagName === el.tagName);
    return `${getSelector(parent)} > ${tag}:nth-of-type(${siblings.indexOf(el) + 1})`;
  }
  function isVisible(el) {
    const style = window.getComputedStyle(el);
    if (style.display === 'none' || style.visibility === 'hidden' || parseFloat(style.opacity) === 0) return false;
    const rect = el.getBoundingClientRect();
    return rect.width > 0 && rect.height > 0;
  }
  function labelFor(inp, scope) {
    if (inp.id) {
      const lbl = scope.querySelector(`label[for="${inp.id}"]`);
      if (lbl) return (lbl.textContent || '').trim().slice(0, 200);
    }
    const wrap = inp.closest('label');
    return wrap ? (wrap.textContent || '').trim().slice(0, 200) : '';
  }
  const buttons = [];
  document.querySelectorAll('button, input[type="submit"], input[type="button"], [role="button"]').forEach((el) => {
    if (!isVisible(el)) return;
    const text = el.value || (el.textContent || '').trim() || el.getAttribute('aria-label') || '';
    buttons.push({ text: text.slice(0, 300), selector: getSelector(el) });
  });
  const links = [];
  document.querySelectorAll('a[href]').forEach((el) => {
    if (!isVisible(el)) return;
    links.push({ text: (el.textContent || '').trim().slice(0, 300), href: el.getAttribute('href'), selector: getSelector(el) });
  });
  const inputs = [];
  document.querySelectorAll('input:not([type="hidden"]), select, textarea, [contenteditable="true"]').forEach((inp) => {
    if (!isVisible(inp)) return;
    inputs.push({
      name: inp.name || '',
      type: inp.isContentEditable ? 'contenteditable' : (inp.type || inp.tagName.toLowerCase()),
      label: labelFor(inp, document),
      placeholder: inp.placeholder || inp.getAttribute('aria-label') || '',
      selector: getSelector(inp),
      id: inp.id || '',
    });
  });
  const forms = [];
  document.querySelectorAll('form').forEach((form) => {
    if (!isVisible(form)) return;
    const formInputs = [];
    form.querySelectorAll('input:not([type="hidden"]):not([type="submit"]):not([type="button"]), select, textarea').forEach((inp) => {
      if (!isVisible(inp)) return;
      formInputs.push({ name: inp.name || '', type: inp.type || inp.tagName.toLowerCase(), label: labelFor(inp, form), selector: getSelector(inp) });
    });
    forms.push({ selector: getSelector(form), action: form.action || '', inputs: formInputs });
  });
  const fullText = (document.body ? document.body.innerText : '').replace(/\\s+/g, ' ').slice(0, TEXT_MAX);
  return {
    url: window.location.href,
    title: document.title || '',
    buttons, links, forms, inputs,
    text: fullText.split(' ').filter((w) => w.length > 2).slice(0, 100),
    full_text: fullText,
  };
}
"""


class BrowserSession:
    """One browser with its open pages, keyed by tab id."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        self.browser: Optional[Browser] = None
        self.pages: Dict[str, Page] = {}
        self.active_tab: Optional[str] = None

    async def active_page(self) -> tuple[str, Page]:
        if not self.browser:
            if not playwright_instance:
                raise HTTPException(status_code=503, detail="Playwright not initialized")
            headless = os.getenv("UWA_HOST_HEADLESS", "true").lower() not in {"0", "false", "no"}
            self.browser = await playwright_instance.chromium.launch(headless=headless)
        if self.active_tab is None or self.active_tab not in self.pages:
            tab_id = uuid.uuid4().hex[:8]
            self.pages[tab_id] = await self.browser.new_page()
            self.active_tab = tab_id
        return self.active_tab, self.pages[self.active_tab]

    def page(self, tab_id: Optional[str]) -> Page:
        if tab_id and tab_id in self.pages:
            return self.pages[tab_id]
        raise HTTPException(status_code=404, detail=f"Tab '{tab_id}' not found")

    async def close(self):
        if self.browser:
            await self.browser.close()
        self.browser = None
        self.pages.clear()
        self.active_tab = None


active_sessions: Dict[str, BrowserSession] = {}


def _session(session_id: str) -> BrowserSession:
    if session_id not in active_sessions:
        active_sessions[session_id] = BrowserSession(session_id)
    return active_sessions[session_id]


class HostRequest(BaseModel):
    action: str = Field(..., description="Environment operation, e.g. 'snapshot' or 'run_action'.")
    params: Dict[str, Any] = Field(default_factory=dict, description="Parameters for the operation.")


@app.on_event("startup")
async def startup_event():
    global playwright_instance
    logger.info("initializing Playwright")
    playwright_instance = await async_playwright().start()


@app.on_event("shutdown")
async def shutdown_event():
    for session in list(active_sessions.values()):
        await session.close()
    active_sessions.clear()
    if playwright_instance:
        await playwright_instance.stop()


async def run_page_action(page: Page, action: Dict[str, Any]) -> Dict[str, Any]:
    """CLICK, TYPE and SUBMIT_FORM against one page. Failures are reported, not raised."""
    kind = str(action.get("type") or "").upper()
    selector = action.get("selector")
    try:
        if kind == "CLICK":
            await page.locator(selector).first.click(timeout=10000)
            return {"success": True, "action": "click"}
        if kind == "TYPE":
            await page.locator(selector).first.fill(action.get("value") or "", timeout=10000)
            return {"success": True, "action": "type"}
        if kind == "SUBMIT_FORM":
            target = selector or "form"
            submitted = await page.evaluate(
                "(sel) => { const el = document.querySelector(sel) || document.querySelector('form');"
                " if (!el) return false; (el.requestSubmit ? el.requestSubmit() : el.submit()); return true; }",
                target,
            )
            if not submitted:
                return {"success": False, "error": "Form not found"}
            return {"success": True, "action": "submit"}
        if kind == "READ":
            return {"success": True, "action": "read"}
    except Exception as exc:
        return {"success": False, "error": str(exc)}
    return {"success": False, "error": f"Unknown action type: {kind}"}


@app.post("/execute")
async def execute_action(request: HostRequest):
    params = request.params
    session = _session(params.get("session_id", "default"))
    action = request.action

    if action == "current_location":
        tab_id, page = await session.active_page()
        return {"tab_id": tab_id, "url": page.url}

    if action == "snapshot":
        page = session.page(params.get("tab_id"))
        try:
            await page.wait_for_load_state("domcontentloaded", timeout=5000)
        except Exception:
            logger.debug("snapshot before domcontentloaded on %s", page.url)
        return await page.evaluate(SNAPSHOT_SCRIPT)

    if action == "run_action":
        page = session.page(params.get("tab_id"))
        payload = params.get("action")
        if not isinstance(payload, dict):
            raise HTTPException(status_code=400, detail="action is required for 'run_action'.")
        return await run_page_action(page, payload)

    if action == "navigate":
        url = params.get("url")
        if not url:
            raise HTTPException(status_code=400, detail="url is required for 'navigate'.")
        page = session.page(params.get("tab_id"))
        try:
            await page.goto(url, wait_until="commit", timeout=60000)
        except Exception as exc:
            raise HTTPException(status_code=502, detail=f"navigation failed: {exc}")
        return {"tab_id": params.get("tab_id"), "url": page.url}

    if action == "status":
        page = session.page(params.get("tab_id"))
        state = await page.evaluate("() => document.readyState")
        return {"status": "complete" if state == "complete" else "loading", "url": page.url}

    raise HTTPException(status_code=400, detail=f"Action '{action}' not supported.")


@app.post("/close_session")
async def close_session(request: HostRequest):
    session_id = request.params.get("session_id", "default")
    if session_id in active_sessions:
        await active_sessions.pop(session_id).close()
        return {"success": True, "message": f"Session '{session_id}' closed"}
    return {"success": False, "message": f"Session '{session_id}' not found"}


@app.get("/")
async def root():
    return {"message": "UWA environment host is running.", "active_sessions": len(active_sessions)}


def main() -> None:
    import uvicorn

    logging.basicConfig(level=os.getenv("UWA_LOG_LEVEL", "INFO"))
    uvicorn.run(app, host=os.getenv("UWA_HOST_BIND", "0.0.0.0"), port=int(os.getenv("UWA_HOST_PORT", "8001")))


if __name__ == "__main__":
    main()
