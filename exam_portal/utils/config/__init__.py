from exam_portal.utils.config.env import Settings, settings
