"""Learned policy endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Request

router = APIRouter(tags=["policy"])


@router.get("/policy")
def policy_show(request: Request):
    return request.app.state.engine.rl.status()


@router.post("/policy/reset")
def policy_reset(request: Request):
    state = request.app.state.engine.reset_policy()
    return {"reset": True, "version": state["version"], "parameters": state["parameters"]}
