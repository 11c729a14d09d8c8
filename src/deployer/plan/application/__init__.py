from deployer.plan.application.loader import build_plan, load_plan, load_plan_text

__all__ = ["build_plan", "load_plan", "load_plan_text"]
