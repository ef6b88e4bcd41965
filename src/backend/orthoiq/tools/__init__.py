"""
Consultation stages that do not own agents: case metrics, fees, reply
parsing, the dialogue conference, synthesis and the prediction market.
"""
