from browser_agent.controller.service import Controller
from browser_agent.controller.views import ActionModel, ActionResult

__all__ = ['ActionModel', 'ActionResult', 'Controller']
