"""Business services of the TMS-MTM rule engine"""
